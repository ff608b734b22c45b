"""Inbound credential extraction and validation."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Mapping

from sidergate.config.settings import settings
from sidergate.core.errors import AuthenticationError


_BEARER_RE = re.compile(r"^bearer\s+(.+)$", re.IGNORECASE)
_MIN_TOKEN_LENGTH = 10


@dataclass(frozen=True, slots=True)
class AuthInfo:
    token: str
    type: Literal["bearer", "x-api-key"]


def _header(headers: Mapping[str, str], name: str) -> str:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return ""


def extract_bearer_token(auth_header: str) -> str:
    match = _BEARER_RE.match(auth_header.strip())
    if not match:
        raise AuthenticationError(
            "Invalid Authorization header format. Expected: Bearer <token>",
            code="INVALID_AUTH_FORMAT",
        )
    token = match.group(1).strip()
    if not token:
        raise AuthenticationError("Empty token in Authorization header", code="EMPTY_TOKEN")
    return token


def extract_auth(headers: Mapping[str, str]) -> AuthInfo:
    """x-api-key wins over Authorization: Bearer."""

    api_key = _header(headers, "x-api-key").strip()
    if api_key:
        return AuthInfo(token=api_key, type="x-api-key")
    auth_header = _header(headers, "authorization")
    if auth_header:
        return AuthInfo(token=extract_bearer_token(auth_header), type="bearer")
    raise AuthenticationError(
        'Missing authentication. Provide either "Authorization: Bearer <token>" or "x-api-key: <token>" header',
        code="MISSING_AUTH",
    )


def is_valid_token(token: str, *, expected: str | None = None, allow_dummy: bool | None = None) -> bool:
    expected = settings.auth_token if expected is None else expected
    allow_dummy = settings.allow_dummy_token if allow_dummy is None else allow_dummy
    if expected:
        return token == expected
    # 未配置 AUTH_TOKEN 时兼容 Claude Code 的 dummy token
    if allow_dummy and token == "dummy":
        return True
    return len(token) >= _MIN_TOKEN_LENGTH


def authenticate(headers: Mapping[str, str]) -> AuthInfo:
    info = extract_auth(headers)
    if not is_valid_token(info.token):
        raise AuthenticationError("Invalid token", code="INVALID_TOKEN")
    return info


def authentication_error_payload(exc: AuthenticationError) -> dict:
    return {
        "type": "error",
        "error": {"type": "authentication_error", "message": str(exc), "code": exc.code},
    }
