import json

import pytest
from fastapi import Request
from fastapi.responses import JSONResponse

from sidergate.core import auth, gateway
from sidergate.core.auth import authenticate, extract_auth, extract_bearer_token, is_valid_token
from sidergate.core.errors import AuthenticationError
from sidergate.observability import logging as event_logging
from sidergate.util.masking import mask_headers, mask_token


def _build_request(path: str, headers: dict[str, str] | None = None) -> Request:
    raw_headers = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()]
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": b"",
        "headers": raw_headers,
        "client": ("127.0.0.1", 50000),
        "server": ("127.0.0.1", 4141),
    }

    async def receive() -> dict:
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request(scope, receive)


async def _allow_next(request: Request):
    return JSONResponse(status_code=200, content={"ok": True, "auth": request.state.auth.type})


def test_api_key_header_wins_over_bearer():
    info = extract_auth({"x-api-key": "key-1234567890", "Authorization": "Bearer bearer-1234567890"})
    assert info.token == "key-1234567890"
    assert info.type == "x-api-key"


def test_bearer_token_is_case_insensitive():
    assert extract_bearer_token("bearer abcdefghijkl") == "abcdefghijkl"
    assert extract_auth({"authorization": "BEARER abcdefghijkl"}).type == "bearer"


@pytest.mark.parametrize(
    "headers,code",
    [
        ({}, "MISSING_AUTH"),
        ({"authorization": "Basic dXNlcjpwYXNz"}, "INVALID_AUTH_FORMAT"),
        ({"authorization": "Bearer    "}, "INVALID_AUTH_FORMAT"),
    ],
)
def test_extract_auth_errors(headers, code):
    with pytest.raises(AuthenticationError) as exc_info:
        extract_auth(headers)
    assert exc_info.value.code == code


def test_token_validity_rules():
    assert is_valid_token("dummy", expected="", allow_dummy=True)
    assert not is_valid_token("dummy", expected="", allow_dummy=False)
    assert not is_valid_token("short", expected="", allow_dummy=True)
    assert is_valid_token("long-enough-token", expected="", allow_dummy=True)
    assert is_valid_token("gateway-secret", expected="gateway-secret")
    assert not is_valid_token("long-enough-token", expected="gateway-secret")


def test_authenticate_uses_configured_token(monkeypatch):
    monkeypatch.setattr(auth.settings, "auth_token", "gateway-secret")
    assert authenticate({"x-api-key": "gateway-secret"}).token == "gateway-secret"
    with pytest.raises(AuthenticationError) as exc_info:
        authenticate({"x-api-key": "another-long-token"})
    assert exc_info.value.code == "INVALID_TOKEN"


@pytest.mark.asyncio
async def test_middleware_rejects_missing_credentials():
    response = await gateway.auth_middleware(_build_request("/v1/messages"), _allow_next)
    assert response.status_code == 401
    body = json.loads(response.body.decode("utf-8"))
    assert body["type"] == "error"
    assert body["error"]["type"] == "authentication_error"
    assert body["error"]["code"] == "MISSING_AUTH"


@pytest.mark.asyncio
async def test_middleware_attaches_auth_info(monkeypatch):
    monkeypatch.setattr(auth.settings, "auth_token", "")
    request = _build_request("/v1/messages", {"authorization": "Bearer client-token-123"})
    response = await gateway.auth_middleware(request, _allow_next)
    assert response.status_code == 200
    assert json.loads(response.body.decode("utf-8"))["auth"] == "bearer"
    assert request.state.auth.token == "client-token-123"


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/", "/health", "/docs"])
async def test_middleware_skips_public_paths(path):
    async def passthrough(request: Request):
        return JSONResponse(status_code=200, content={"ok": True})

    response = await gateway.auth_middleware(_build_request(path), passthrough)
    assert response.status_code == 200


def test_credentials_are_masked_for_logs():
    assert mask_token("short-token") == "***"
    assert mask_token("sk-ant-REDACTED") == "sk-ant-api...mnop"
    masked = mask_headers({"Authorization": "Bearer x", "X-Api-Key": "k", "X-Conversation-ID": "cid-1"})
    assert masked == {"Authorization": "***", "X-Api-Key": "***", "X-Conversation-ID": "cid-1"}


def test_log_event_masks_credential_fields(monkeypatch):
    lines = []
    monkeypatch.setattr(event_logging.logger, "info", lambda msg, *args: lines.append(msg % args))
    event_logging.log_event("backend_fallback", source="sider", auth_token="sk-ant-REDACTED")
    assert "sk-ant-REDACTED" not in lines[0]
    assert "'source': 'sider'" in lines[0]
