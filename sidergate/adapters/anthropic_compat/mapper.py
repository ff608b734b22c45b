"""Anthropic Messages <-> Sider request/response mapping."""

from __future__ import annotations

import json
import math
from typing import Any, Protocol, Sequence

from pydantic import ValidationError

from sidergate.adapters.sider.models import SiderMultiContent, SiderParsedResponse, SiderRequest
from sidergate.config.models import map_model_name
from sidergate.core.errors import InvalidRequestError, UpstreamError
from sidergate.core.models import (
    ChatRequest,
    ChatResponse,
    OutputBlock,
    SiderMessageIds,
    SiderSessionInfo,
    TextBlock,
    Tool,
    Usage,
)
from sidergate.storage.sessions import SiderSessionStore
from sidergate.util.logger import logger, short_id


NO_TEXT_PLACEHOLDER = "Response received but no text content was generated."
_VALID_ROLES = {"user", "assistant"}

# Anthropic 侧工具名 -> Sider 原生工具名；不在表内的工具 Sider 无法执行，直接丢弃
SIDER_TOOL_NAMES: dict[str, str] = {
    "create_image": "create_image",
    "generate_image": "create_image",
    "image_generation": "create_image",
    "search": "search",
    "web_search": "search",
    "search_web": "search",
    "internet_search": "search",
    "web_browse": "web_browse",
    "browse_web": "web_browse",
    "web_browsing": "web_browse",
    "visit_url": "web_browse",
}

_SIDER_TOOL_OPTIONS: dict[str, tuple[str, dict[str, Any]]] = {
    "create_image": ("image", {"quality_level": "high"}),
    "search": ("search", {"enabled": True, "max_results": 10}),
    "web_browse": ("web_browse", {"enabled": True, "timeout": 30}),
}


class HistoryClient(Protocol):
    async def get_history(self, cid: str, auth_token: str, limit: int | None = None) -> Any: ...


# ---- validation ----


def _is_empty_content(content: Any) -> bool:
    if content is None:
        return True
    if isinstance(content, (str, list, dict)):
        return len(content) == 0
    return False


def validate_chat_request(payload: Any) -> ChatRequest:
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    if not payload.get("model"):
        raise InvalidRequestError("Missing required field: model")
    messages = payload.get("messages")
    if messages is None or not isinstance(messages, list):
        raise InvalidRequestError("Missing required field: messages")
    if not messages:
        raise InvalidRequestError("Messages array cannot be empty")
    if not any(isinstance(m, dict) and m.get("role") == "user" for m in messages):
        raise InvalidRequestError("At least one user message is required")
    for message in messages:
        if not isinstance(message, dict) or message.get("role") not in _VALID_ROLES:
            raise InvalidRequestError('Invalid message role. Must be "user" or "assistant"')
        if _is_empty_content(message.get("content")):
            raise InvalidRequestError("Message content cannot be empty")
    try:
        return ChatRequest.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidRequestError(f"Invalid request field {location}: {first.get('msg', 'invalid value')}") from exc


# ---- request translation ----


def extract_text_content(content: str | Sequence[Any]) -> str:
    if isinstance(content, str):
        return content
    parts = [block.text for block in content if isinstance(block, TextBlock) and block.text]
    return "\n".join(parts).strip()


def current_user_text(request: ChatRequest) -> str:
    for message in reversed(request.messages):
        if message.role == "user":
            return extract_text_content(message.content)
    raise InvalidRequestError("No user message found in request")


def build_tools_config(tools: Sequence[Tool] | None) -> dict[str, Any]:
    if not tools:
        return {"auto": []}
    auto: list[str] = []
    config: dict[str, Any] = {"auto": auto}
    dropped: list[str] = []
    for tool in tools:
        mapped = SIDER_TOOL_NAMES.get(tool.name)
        if mapped is None:
            dropped.append(tool.name)
            continue
        if mapped not in auto:
            auto.append(mapped)
        key, options = _SIDER_TOOL_OPTIONS[mapped]
        config[key] = dict(options)
    if dropped:
        logger.warning("tools not supported by sider were ignored names=%s", dropped)
    logger.info("tools converted for sider requested=%s auto=%s", [t.name for t in tools], auto)
    return config


def build_client_prompt(request: ChatRequest) -> dict[str, Any]:
    prompt: dict[str, Any] = {}
    if request.temperature is not None and 0 <= request.temperature <= 1:
        prompt["temperature"] = request.temperature
    return prompt


def _build_sider_request(request: ChatRequest, text: str, user_input: str, cid: str, parent_id: str) -> SiderRequest:
    return SiderRequest(
        cid=cid,
        parent_message_id=parent_id,
        model=map_model_name(request.model),
        client_prompt=build_client_prompt(request),
        multi_content=[SiderMultiContent(text=text, user_input_text=user_input)],
        tools=build_tools_config(request.tools),
    )


def _wire_cid(cid: str | None) -> str:
    # 占位会话 ID 只在本地使用
    if not cid or SiderSessionStore.is_placeholder_id(cid):
        return ""
    return cid


def to_sider_request(
    request: ChatRequest,
    cid: str | None = None,
    session_store: SiderSessionStore | None = None,
) -> SiderRequest:
    """Fresh or local-session translation; only the current turn is sent."""

    user_input = current_user_text(request)
    continuing = bool(cid) and len(request.messages) > 1

    parent_id = ""
    if continuing and session_store is not None:
        if session_store.is_placeholder_id(cid):
            parent_id = session_store.get_or_create_placeholder_session().assistant_message_id
        else:
            parent_id = session_store.get_next_parent_id(cid)

    text = user_input
    system = request.system_text
    if system and len(request.messages) == 1 and not cid:
        text = f"{system}\n\n{user_input}"

    sider_request = _build_sider_request(request, text, user_input, _wire_cid(cid), parent_id)
    logger.info(
        "converted request for sider cid=%s parent=%s messages=%d model=%s",
        short_id(sider_request.cid) if sider_request.cid else "new",
        short_id(parent_id),
        len(request.messages),
        sider_request.model,
    )
    return sider_request


async def to_sider_request_with_history(
    request: ChatRequest,
    auth_token: str,
    cid: str | None,
    history_client: HistoryClient | None,
    session_store: SiderSessionStore | None,
) -> SiderRequest:
    """Prefer the remote history for the parent link, then the local session."""

    wire_cid = _wire_cid(cid)
    if wire_cid and len(request.messages) > 1 and history_client is not None:
        try:
            history = await history_client.get_history(wire_cid, auth_token)
        except UpstreamError as exc:
            logger.warning("failed to get sider history, using local session cid=%s error=%s", short_id(wire_cid), exc)
        else:
            parent_id = history.latest_message_id
            user_input = current_user_text(request)
            logger.info(
                "using sider conversation history cid=%s history_messages=%d parent=%s",
                short_id(wire_cid),
                len(history.messages),
                short_id(parent_id),
            )
            return _build_sider_request(request, user_input, user_input, wire_cid, parent_id)
    return to_sider_request(request, cid, session_store)


# ---- response translation ----


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def count_tokens(messages: Any) -> int:
    serialized = json.dumps(messages if messages is not None else [], ensure_ascii=False, separators=(",", ":"))
    return math.ceil(len(serialized) / 4)


def to_chat_response(parsed: SiderParsedResponse, model: str, input_tokens: int = 0) -> ChatResponse:
    text = parsed.text.strip() or NO_TEXT_PLACEHOLDER
    usage = Usage(
        input_tokens=input_tokens,
        output_tokens=estimate_tokens(text) + estimate_tokens(parsed.reasoning_text),
    )
    session = None
    if parsed.conversation_id and parsed.assistant_message_id is not None:
        session = SiderSessionInfo(
            conversation_id=parsed.conversation_id,
            message_ids=SiderMessageIds(
                user=parsed.user_message_id or "",
                assistant=parsed.assistant_message_id or "",
            ),
        )
    response = ChatResponse(
        content=[OutputBlock(type="text", text=text)],
        model=model,
        stop_reason="end_turn",
        usage=usage,
        sider_session=session,
    )
    logger.info(
        "sider response converted id=%s text_len=%d output_tokens=%d reasoning=%s cid=%s",
        response.id,
        len(text),
        usage.output_tokens,
        bool(parsed.reasoning_parts),
        short_id(parsed.conversation_id),
    )
    return response


def error_chat_response(exc: BaseException, model: str = "unknown") -> ChatResponse:
    message = str(exc) or exc.__class__.__name__
    response = ChatResponse(
        content=[OutputBlock(type="text", text=f"Error: {message}")],
        model=model,
        stop_reason="end_turn",
        usage=Usage(input_tokens=0, output_tokens=0),
    )
    logger.error("created error response id=%s model=%s error=%s", response.id, model, message)
    return response


def session_headers(response: ChatResponse) -> dict[str, str]:
    session = response.sider_session
    if session is None or not session.conversation_id:
        return {}
    headers = {"X-Conversation-ID": session.conversation_id}
    if session.message_ids is not None:
        if session.message_ids.assistant:
            headers["X-Assistant-Message-ID"] = session.message_ids.assistant
        if session.message_ids.user:
            headers["X-User-Message-ID"] = session.message_ids.user
    return headers
