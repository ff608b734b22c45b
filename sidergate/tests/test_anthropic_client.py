import pytest

from sidergate.adapters.anthropic_api.client import AnthropicApiClient, build_anthropic_headers
from sidergate.adapters.anthropic_api.model_mapper import ModelMapper
from sidergate.config.backends import AnthropicBackendConfig
from sidergate.core.errors import UpstreamError
from sidergate.core.models import ChatRequest


def _config(base_url="https://api.anthropic.com", dynamic=True):
    return AnthropicBackendConfig(enabled=True, base_url=base_url, api_key="sk-test", dynamic_model_mapping=dynamic)


def _request(**extra):
    payload = {"model": "claude-3-5-sonnet-20241022", "messages": [{"role": "user", "content": "hello"}], "max_tokens": 64}
    payload.update(extra)
    return ChatRequest.model_validate(payload)


def _upstream_message(text="Hi!"):
    return {
        "id": "msg_upstream",
        "type": "message",
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "model": "claude-3-5-sonnet-20241022",
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 9, "output_tokens": 2},
    }


def test_official_endpoint_uses_api_key_header():
    headers = build_anthropic_headers(_config())
    assert headers["x-api-key"] == "sk-test"
    assert headers["anthropic-version"] == "2023-06-01"
    assert headers["Content-Type"] == "application/json"
    assert "Authorization" not in headers
    assert AnthropicApiClient(_config()).model_mapper is None


def test_third_party_endpoint_uses_bearer_and_client_identity():
    config = _config("https://relay.example.com")
    headers = build_anthropic_headers(config, json_body=False)
    assert headers["Authorization"] == "Bearer sk-test"
    assert headers["User-Agent"] == "Claude-Code/1.0.0"
    assert headers["X-Client-Name"] == "claude-code"
    assert "x-api-key" not in headers
    assert "Content-Type" not in headers
    assert isinstance(AnthropicApiClient(config).model_mapper, ModelMapper)
    assert AnthropicApiClient(_config("https://relay.example.com", dynamic=False)).model_mapper is None


@pytest.mark.asyncio
async def test_send_returns_upstream_message(monkeypatch):
    captured = {}

    async def fake_forward_json(url, payload, headers, timeout_seconds):
        captured.update(url=url, payload=payload, headers=headers)
        return 200, _upstream_message()

    monkeypatch.setattr("sidergate.adapters.anthropic_api.client._forward_json", fake_forward_json)

    response = await AnthropicApiClient(_config()).send(_request(stream=True, metadata={"user_id": "u1"}))
    assert response.text == "Hi!"
    assert response.usage.output_tokens == 2
    assert captured["url"] == "https://api.anthropic.com/v1/messages"
    assert captured["payload"]["stream"] is False
    assert captured["payload"]["metadata"] == {"user_id": "u1"}
    assert captured["payload"]["max_tokens"] == 64


@pytest.mark.asyncio
async def test_send_maps_model_for_third_party_endpoint(monkeypatch):
    class FakeMapper:
        async def map_model(self, requested):
            return "claude-3-5-sonnet-latest"

    captured = {}

    async def fake_forward_json(url, payload, headers, timeout_seconds):
        captured["model"] = payload["model"]
        return 200, _upstream_message()

    monkeypatch.setattr("sidergate.adapters.anthropic_api.client._forward_json", fake_forward_json)

    client = AnthropicApiClient(_config("https://relay.example.com"), model_mapper=FakeMapper())
    await client.send(_request())
    assert captured["model"] == "claude-3-5-sonnet-latest"


@pytest.mark.asyncio
async def test_send_accepts_unlisted_stop_reason(monkeypatch):
    message = _upstream_message("partial")
    message["stop_reason"] = "model_context_window_exceeded"

    async def fake_forward_json(url, payload, headers, timeout_seconds):
        return 200, message

    monkeypatch.setattr("sidergate.adapters.anthropic_api.client._forward_json", fake_forward_json)

    response = await AnthropicApiClient(_config()).send(_request())
    assert response.stop_reason == "model_context_window_exceeded"
    assert response.to_payload()["stop_reason"] == "model_context_window_exceeded"
    assert response.text == "partial"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,body,message",
    [
        (529, {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}, "Anthropic API error: 529"),
        (200, "not json at all", "Invalid response format from Anthropic API"),
        (200, {"content": "oops", "usage": []}, "Invalid response format from Anthropic API"),
    ],
)
async def test_send_raises_upstream_error(monkeypatch, status, body, message):
    async def fake_forward_json(url, payload, headers, timeout_seconds):
        return status, body

    monkeypatch.setattr("sidergate.adapters.anthropic_api.client._forward_json", fake_forward_json)

    with pytest.raises(UpstreamError) as exc_info:
        await AnthropicApiClient(_config()).send(_request())
    assert str(exc_info.value).startswith(message)
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_send_stream_relays_chunks(monkeypatch):
    async def fake_forward_stream_lines(url, payload, headers, timeout_seconds, expected_content_type=None):
        assert payload["stream"] is True
        yield "event: message_start"
        yield 'data: {"type":"message_start"}'
        yield "data: {broken"
        yield 'data: {"type":"message_stop"}'

    monkeypatch.setattr("sidergate.adapters.anthropic_api.client._forward_stream_lines", fake_forward_stream_lines)

    chunks, completed, errors = [], [], []
    await AnthropicApiClient(_config()).send_stream(
        _request(), chunks.append, lambda: completed.append(True), errors.append
    )
    assert [chunk["type"] for chunk in chunks] == ["message_start", "message_stop"]
    assert completed == [True]
    assert errors == []


@pytest.mark.asyncio
async def test_send_stream_reports_errors(monkeypatch):
    async def fake_forward_stream_lines(url, payload, headers, timeout_seconds, expected_content_type=None):
        raise UpstreamError("upstream_http_error:401:invalid x-api-key", status_code=401)
        yield ""  # pragma: no cover

    monkeypatch.setattr("sidergate.adapters.anthropic_api.client._forward_stream_lines", fake_forward_stream_lines)

    errors = []
    await AnthropicApiClient(_config()).send_stream(_request(), lambda chunk: None, lambda: None, errors.append)
    assert len(errors) == 1
    assert errors[0].status_code == 401


@pytest.mark.asyncio
async def test_health_check(monkeypatch):
    async def fake_fetch_json(url, headers, timeout_seconds):
        assert url == "https://api.anthropic.com/v1/models"
        return 200, {"data": []}

    monkeypatch.setattr("sidergate.adapters.anthropic_api.client._fetch_json", fake_fetch_json)
    assert await AnthropicApiClient(_config()).health_check() is True

    async def failing_fetch_json(url, headers, timeout_seconds):
        raise UpstreamError("upstream_unreachable: request timed out")

    monkeypatch.setattr("sidergate.adapters.anthropic_api.client._fetch_json", failing_fetch_json)
    assert await AnthropicApiClient(_config()).health_check() is False
