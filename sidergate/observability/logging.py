"""Structured event lines for routing and fallback decisions."""

from __future__ import annotations

from sidergate.util.logger import logger
from sidergate.util.masking import mask_token


_SENSITIVE_KEYS = ("token", "api_key", "secret", "authorization")


def _safe_payload(payload: dict[str, object]) -> dict[str, object]:
    return {
        key: mask_token(str(value)) if any(marker in key.lower() for marker in _SENSITIVE_KEYS) else value
        for key, value in payload.items()
    }


def log_event(event: str, **payload: object) -> None:
    logger.info("event=%s payload=%s", event, _safe_payload(payload))
