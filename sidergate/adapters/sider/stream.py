"""
Sider SSE 解析：逐行读取 `data: {code,msg,data:{type,...}}`，累积到 SiderParsedResponse。
"""

from __future__ import annotations

import json
from collections.abc import Callable

from pydantic import ValidationError

from sidergate.adapters.sider.models import (
    CreditInfoEvent,
    MessageStartEvent,
    ReasoningContentEvent,
    SiderEnvelope,
    SiderParsedResponse,
    TextEvent,
    ToolCallProgressEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
    ToolInvocation,
    UnknownEvent,
)
from sidergate.util.logger import logger, short_id


_DONE_SENTINEL = "[DONE]"

MessageStartCallback = Callable[[str, str, str, str], None]


def _extract_sse_data_payload(line: str) -> str | None:
    stripped = line.strip()
    if not stripped or stripped.startswith(":"):
        return None
    if not stripped.startswith("data:"):
        return None
    return stripped[5:].strip()


class SiderStreamParser:
    """Single-pass accumulator over one Sider event stream."""

    def __init__(self, on_message_start: MessageStartCallback | None = None) -> None:
        self.result = SiderParsedResponse()
        self.done = False
        self._on_message_start = on_message_start

    def feed_line(self, line: str) -> None:
        if self.done:
            return
        data = _extract_sse_data_payload(line)
        if data is None:
            return
        if data == _DONE_SENTINEL:
            logger.debug("sider stream completed")
            self.done = True
            return
        try:
            envelope = SiderEnvelope.model_validate(json.loads(data))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("failed to parse sider sse data line=%s error=%s", data[:200], exc)
            return
        if envelope.code != 0:
            logger.warning("sider api warning code=%s msg=%s", envelope.code, envelope.msg)
            return
        if envelope.data is not None:
            self._apply(envelope.data)

    def _apply(self, event) -> None:
        result = self.result
        if isinstance(event, CreditInfoEvent):
            result.credit_info = event.credit_info
            logger.debug("sider credit info received")
            return

        if event.model:
            result.model = event.model

        if isinstance(event, MessageStartEvent):
            start = event.message_start
            if start is None:
                return
            result.conversation_id = start.cid
            result.user_message_id = start.user_message_id
            result.assistant_message_id = start.assistant_message_id
            logger.info(
                "sider session captured cid=%s user_msg=%s assistant_msg=%s model=%s",
                short_id(start.cid),
                short_id(start.user_message_id),
                short_id(start.assistant_message_id),
                event.model,
            )
            if self._on_message_start is not None:
                self._on_message_start(start.cid, start.user_message_id, start.assistant_message_id, event.model)
        elif isinstance(event, ReasoningContentEvent):
            if event.reasoning_content is not None and event.reasoning_content.text:
                result.reasoning_parts.append(event.reasoning_content.text)
        elif isinstance(event, TextEvent):
            if event.text:
                result.text_parts.append(event.text)
        elif isinstance(event, ToolCallStartEvent):
            self._tool_start(event)
        elif isinstance(event, ToolCallProgressEvent):
            self._tool_progress(event)
        elif isinstance(event, ToolCallResultEvent):
            self._tool_result(event)
        elif isinstance(event, UnknownEvent):
            logger.debug("unknown sider sse event type=%s", event.type)

    def _tool_start(self, event: ToolCallStartEvent) -> None:
        call = event.tool_call
        if call is None:
            return
        tool = self.result.find_tool(call.id)
        if tool is None:
            tool = ToolInvocation(tool_id=call.id, tool_name=call.name)
            self.result.tool_results.append(tool)
        tool.status = "start"
        logger.info("sider tool call started id=%s name=%s", short_id(call.id), call.name)

    def _tool_progress(self, event: ToolCallProgressEvent) -> None:
        call = event.tool_call
        if call is None:
            return
        tool = self.result.find_tool(call.id)
        if tool is None:
            return
        tool.status = "processing"
        if call.progress:
            merged = dict(tool.result) if isinstance(tool.result, dict) else {}
            merged["progress"] = call.progress
            tool.result = merged

    def _tool_result(self, event: ToolCallResultEvent) -> None:
        call = event.tool_call
        if call is None:
            return
        tool = self.result.find_tool(call.id)
        if tool is None:
            logger.warning("sider tool call result without start event id=%s", short_id(call.id))
            tool = ToolInvocation(tool_id=call.id, tool_name=call.name)
            self.result.tool_results.append(tool)
        tool.status = "finish"
        tool.result = call.result
        if call.error:
            tool.error = call.error
            logger.warning("sider tool call failed name=%s error=%s", call.name, call.error)

    def finish(self) -> SiderParsedResponse:
        result = self.result
        if not result.text_parts:
            logger.warning("no text content received from sider")
        incomplete = [tool for tool in result.tool_results if tool.status != "finish"]
        if incomplete:
            logger.warning(
                "sider tool calls did not complete count=%d names=%s",
                len(incomplete),
                [tool.tool_name for tool in incomplete],
            )
        logger.info(
            "sider sse parsed model=%s text_parts=%d reasoning_parts=%d tools=%d cid=%s",
            result.model,
            len(result.text_parts),
            len(result.reasoning_parts),
            len(result.tool_results),
            short_id(result.conversation_id),
        )
        return result
