"""Credential masking for config summaries and debug logs."""

from __future__ import annotations

import re


def mask_token(value: str) -> str:
    """Return a masked credential safe for log output.

    Tokens shorter than 20 chars are fully hidden; longer ones keep the first
    10 and last 4 chars.
    """
    normalized = re.sub(r"\s+", "", value or "")
    if len(normalized) < 20:
        return "***"
    return f"{normalized[:10]}...{normalized[-4:]}"


def mask_headers(headers: dict[str, str]) -> dict[str, str]:
    safe: dict[str, str] = {}
    for key, value in headers.items():
        lowered = key.lower()
        if lowered in {"authorization", "x-api-key"} or "token" in lowered or "secret" in lowered:
            safe[key] = "***"
        else:
            safe[key] = value
    return safe
