"""
上游 HTTP 转发：共享 httpx 连接池、JSON 请求与逐行事件流。供两个后端客户端复用，便于单测替换。
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncGenerator, Mapping

import httpx

from sidergate.config.settings import settings
from sidergate.core.errors import UpstreamError
from sidergate.util.logger import logger


_upstream_async_client: httpx.AsyncClient | None = None
_upstream_client_lock: Any = None


def _upstream_http_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(settings.upstream_max_connections)),
        max_keepalive_connections=max(5, int(settings.upstream_max_keepalive_connections)),
    )


def _upstream_http_timeout(seconds: float) -> httpx.Timeout:
    timeout = float(seconds)
    return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)


async def _get_upstream_async_client() -> httpx.AsyncClient:
    global _upstream_async_client, _upstream_client_lock
    if _upstream_async_client is not None:
        return _upstream_async_client
    if _upstream_client_lock is None:
        _upstream_client_lock = asyncio.Lock()
    async with _upstream_client_lock:
        if _upstream_async_client is None:
            _upstream_async_client = httpx.AsyncClient(
                http2=False,
                timeout=_upstream_http_timeout(settings.anthropic_timeout_seconds),
                limits=_upstream_http_limits(),
            )
    return _upstream_async_client


async def close_upstream_async_client() -> None:
    global _upstream_async_client
    if _upstream_async_client is not None:
        await _upstream_async_client.aclose()
        _upstream_async_client = None


def _decode_json_or_text(body: bytes) -> dict[str, Any] | str:
    text = body.decode("utf-8", errors="replace")
    if not text:
        return ""
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
        return text
    except json.JSONDecodeError:
        return text


def _safe_error_detail(payload: dict[str, Any] | str, limit: int = 200) -> str:
    if isinstance(payload, str):
        return payload[:limit]
    error = payload.get("error")
    if isinstance(error, str):
        return error[:limit]
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"][:limit]
    return json.dumps(payload, ensure_ascii=False)[:limit]


def _transport_error(url: str, exc: httpx.HTTPError, label: str) -> UpstreamError:
    if isinstance(exc, httpx.TimeoutException):
        detail = "request timed out"
    else:
        detail = (str(exc) or "").strip() or "connection_failed_or_timeout"
    logger.warning("%s http_error url=%s error=%s", label, url, detail)
    return UpstreamError(f"upstream_unreachable: {detail}")


async def _forward_json(
    url: str,
    payload: dict[str, Any],
    headers: Mapping[str, str],
    timeout_seconds: float,
) -> tuple[int, dict[str, Any] | str]:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    logger.debug("forward_json start url=%s payload_bytes=%d", url, len(body))
    client = await _get_upstream_async_client()
    try:
        response = await client.post(
            url=url,
            content=body,
            headers=dict(headers),
            timeout=_upstream_http_timeout(timeout_seconds),
        )
        logger.debug("forward_json done url=%s status=%s", url, response.status_code)
        return response.status_code, _decode_json_or_text(response.content)
    except httpx.HTTPError as exc:
        raise _transport_error(url, exc, "forward_json") from exc


async def _fetch_json(
    url: str,
    headers: Mapping[str, str],
    timeout_seconds: float,
) -> tuple[int, dict[str, Any] | str]:
    logger.debug("fetch_json start url=%s", url)
    client = await _get_upstream_async_client()
    try:
        response = await client.get(url=url, headers=dict(headers), timeout=_upstream_http_timeout(timeout_seconds))
        logger.debug("fetch_json done url=%s status=%s", url, response.status_code)
        return response.status_code, _decode_json_or_text(response.content)
    except httpx.HTTPError as exc:
        raise _transport_error(url, exc, "fetch_json") from exc


async def _forward_stream_lines(
    url: str,
    payload: dict[str, Any],
    headers: Mapping[str, str],
    timeout_seconds: float,
    expected_content_type: str | None = None,
) -> AsyncGenerator[str, None]:
    """POST and yield the response body line by line (without newline)."""

    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    logger.debug("forward_stream start url=%s payload_bytes=%d", url, len(body))
    client = await _get_upstream_async_client()
    try:
        async with client.stream(
            "POST",
            url=url,
            content=body,
            headers=dict(headers),
            timeout=_upstream_http_timeout(timeout_seconds),
        ) as resp:
            logger.debug("forward_stream connected url=%s status=%s", url, resp.status_code)
            if resp.status_code >= 400:
                detail = _safe_error_detail(_decode_json_or_text(await resp.aread()))
                raise UpstreamError(
                    f"upstream_http_error:{resp.status_code}:{detail}",
                    status_code=resp.status_code,
                    body=detail,
                )
            content_type = resp.headers.get("content-type", "")
            if expected_content_type and expected_content_type not in content_type:
                detail = _safe_error_detail(_decode_json_or_text(await resp.aread()))
                logger.warning("forward_stream unexpected content_type=%s url=%s", content_type, url)
                raise UpstreamError(
                    f"Expected {expected_content_type} response, got: {content_type or 'unknown'}",
                    status_code=resp.status_code,
                    body=detail,
                )
            async for line in resp.aiter_lines():
                yield line
    except httpx.HTTPError as exc:
        raise _transport_error(url, exc, "forward_stream") from exc
