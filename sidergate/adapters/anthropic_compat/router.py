"""Anthropic Messages compatible routes."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from sidergate.adapters.anthropic_compat.mapper import (
    count_tokens,
    error_chat_response,
    session_headers,
    validate_chat_request,
)
from sidergate.adapters.anthropic_compat.stream_utils import (
    StreamPacing,
    _build_streaming_response,
    synthesize_stream,
)
from sidergate.config.models import SUPPORTED_MODELS
from sidergate.config.settings import settings
from sidergate.core.auth import AuthInfo
from sidergate.core.errors import InvalidRequestError, SiderGateError
from sidergate.core.models import error_payload
from sidergate.core.runtime import GatewayRuntime, build_runtime
from sidergate.util.logger import logger
from sidergate.util.masking import mask_headers


router = APIRouter()
_runtime: GatewayRuntime | None = None
_DEBUG_REQUEST_BODY_MAX_CHARS = 32000


def init_runtime(runtime: GatewayRuntime | None = None) -> GatewayRuntime:
    global _runtime
    _runtime = runtime or build_runtime()
    return _runtime


def get_runtime() -> GatewayRuntime:
    if _runtime is None:
        return init_runtime()
    return _runtime


def reset_runtime() -> None:
    global _runtime
    _runtime = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _log_request_if_debug(request: Request, payload: dict[str, Any]) -> None:
    """debug 级别时打印请求概要；正文按 log_full_request_body 决定是否打印。"""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    try:
        body_str = json.dumps(payload, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        body_str = str(payload)
    logger.debug(
        "incoming request method=%s path=%s headers=%s body_size=%d",
        request.method,
        request.url.path,
        mask_headers(dict(request.headers)),
        len(body_str),
    )
    if settings.log_full_request_body:
        logger.debug("incoming request body:\n%s", body_str[:_DEBUG_REQUEST_BODY_MAX_CHARS])


def _auth_info(request: Request) -> AuthInfo | None:
    return getattr(request.state, "auth", None)


def _unauthenticated() -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content=error_payload("authentication_error", "Authentication required"),
    )


def _invalid_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content=error_payload("invalid_request_error", message))


async def _max_age_hours(request: Request, default: float) -> float:
    raw: Any = request.query_params.get("max_age_hours")
    if raw is None:
        body = await request.body()
        if body:
            try:
                parsed = json.loads(body)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, dict):
                raw = parsed.get("max_age_hours")
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("ignore invalid max_age_hours=%s", raw)
        return default
    return value if value >= 0 else default


@router.post("/messages")
async def messages(payload: dict, request: Request):
    _log_request_if_debug(request, payload)
    auth = _auth_info(request)
    if auth is None:
        return _unauthenticated()

    logger.info(
        "received request model=%s messages=%s tools=%s stream=%s",
        payload.get("model"),
        len(payload.get("messages") or []) if isinstance(payload.get("messages"), list) else 0,
        len(payload.get("tools") or []) if isinstance(payload.get("tools"), list) else 0,
        bool(payload.get("stream")),
    )
    try:
        chat_request = validate_chat_request(payload)
    except InvalidRequestError as exc:
        logger.warning("invalid messages request error=%s", exc)
        return _invalid_request(str(exc))

    conversation_id = request.query_params.get("cid") or request.headers.get("x-conversation-id") or None
    parent_message_id = request.headers.get("x-parent-message-id") or None

    runtime = get_runtime()
    try:
        result = await runtime.orchestrator.handle(
            chat_request,
            auth.token,
            conversation_id=conversation_id,
            parent_message_id=parent_message_id,
        )
    except SiderGateError as exc:
        logger.error("messages request failed error=%s", exc)
        return JSONResponse(status_code=500, content=error_chat_response(exc, chat_request.model).to_payload())

    headers: dict[str, str] = {}
    if result.backend == "sider":
        headers.update(session_headers(result.response))
    if runtime.config.routing.debug_mode:
        headers["X-Backend-Used"] = result.backend
        headers["X-Routing-Rule"] = result.decision.rule_id

    if chat_request.stream:
        logger.debug("creating synthesized stream id=%s text_len=%d", result.response.id, len(result.response.text))
        return _build_streaming_response(synthesize_stream(result.response, StreamPacing.from_settings()), headers)
    return JSONResponse(content=result.response.to_payload(), headers=headers)


@router.post("/messages/count_tokens")
async def messages_count_tokens(payload: dict, request: Request):
    if _auth_info(request) is None:
        return _unauthenticated()
    return {"input_tokens": count_tokens(payload.get("messages") or [])}


@router.get("/messages/conversations")
async def conversation_stats(request: Request):
    if _auth_info(request) is None:
        return _unauthenticated()
    return {
        "status": "ok",
        "timestamp": _now_iso(),
        "conversations": get_runtime().stores.conversations.stats(),
    }


@router.post("/messages/conversations/cleanup")
async def conversation_cleanup(request: Request):
    if _auth_info(request) is None:
        return _unauthenticated()
    max_age = await _max_age_hours(request, settings.conversation_cleanup_hours)
    cleaned = get_runtime().stores.conversations.cleanup_expired(max_age)
    return {"status": "ok", "timestamp": _now_iso(), "cleanedConversations": cleaned}


@router.get("/messages/sider-sessions")
async def sider_session_stats(request: Request):
    if _auth_info(request) is None:
        return _unauthenticated()
    return {
        "status": "ok",
        "timestamp": _now_iso(),
        "sider_sessions": get_runtime().stores.sider_sessions.stats(),
    }


@router.post("/messages/sider-sessions/cleanup")
async def sider_session_cleanup(request: Request):
    if _auth_info(request) is None:
        return _unauthenticated()
    max_age = await _max_age_hours(request, settings.sider_session_cleanup_hours)
    cleaned = get_runtime().stores.sider_sessions.cleanup_expired(max_age)
    return {"status": "ok", "timestamp": _now_iso(), "cleanedSiderSessions": cleaned}


@router.get("/messages/backends/status")
async def backends_status(request: Request):
    if _auth_info(request) is None:
        return _unauthenticated()
    runtime = get_runtime()
    config = runtime.config
    return {
        "status": "ok",
        "timestamp": _now_iso(),
        "backends": {
            "sider": {"enabled": config.sider.enabled, "available": bool(config.sider.auth_token)},
            "anthropic": {"enabled": config.anthropic.enabled, "available": bool(config.anthropic.api_key)},
        },
        "routing": {
            "defaultBackend": config.routing.default_backend,
            "autoFallback": config.routing.auto_fallback,
            "preferSiderForSimpleChat": config.routing.prefer_sider_for_simple_chat,
            "debugMode": config.routing.debug_mode,
        },
        "stats": runtime.engine.stats(),
    }


@router.get("/models")
async def list_models(request: Request):
    if _auth_info(request) is None:
        return _unauthenticated()
    return {"object": "list", "data": [model.to_dict() for model in SUPPORTED_MODELS]}
