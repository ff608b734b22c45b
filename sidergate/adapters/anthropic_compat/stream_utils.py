"""
模拟流式输出：把已完成的 ChatResponse 拆成 Anthropic SSE 事件序列。
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, AsyncIterable

from fastapi.responses import StreamingResponse

from sidergate.config.settings import settings
from sidergate.core.models import ChatResponse, OutputBlock


_TOKEN_SPLIT = re.compile(r"(\s+)")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class StreamPacing:
    token_delay: float = 0.15
    tail_delay: float = 0.1

    @classmethod
    def from_settings(cls) -> StreamPacing:
        return cls(
            token_delay=settings.stream_token_delay_ms / 1000,
            tail_delay=settings.stream_tail_delay_ms / 1000,
        )


def _sse_event(event_type: str, payload: dict[str, Any]) -> bytes:
    return f"event: {event_type}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def split_stream_tokens(text: str) -> list[str]:
    """Split on whitespace runs, keeping them as tokens so the joined deltas equal ``text``."""

    return [token for token in _TOKEN_SPLIT.split(text) if token]


def _message_start(response: ChatResponse) -> dict[str, Any]:
    return {
        "type": "message_start",
        "message": {
            "id": response.id,
            "type": "message",
            "role": "assistant",
            "content": [],
            "model": response.model,
            "stop_reason": None,
            "stop_sequence": None,
            "usage": {"input_tokens": response.usage.input_tokens, "output_tokens": 0},
        },
    }


def _block_start(index: int, block: OutputBlock) -> bytes:
    if block.type == "text":
        content_block: dict[str, Any] = {"type": "text", "text": ""}
    elif block.type == "tool_use":
        content_block = {**block.model_dump(exclude_none=True), "input": {}}
    else:
        content_block = block.model_dump(exclude_none=True)
    return _sse_event(
        "content_block_start",
        {"type": "content_block_start", "index": index, "content_block": content_block},
    )


def _block_delta(index: int, delta: dict[str, Any]) -> bytes:
    return _sse_event("content_block_delta", {"type": "content_block_delta", "index": index, "delta": delta})


def _streamable_blocks(response: ChatResponse) -> list[OutputBlock]:
    # 空文本块不产生任何事件
    return [block for block in response.content if block.type != "text" or block.text]


async def synthesize_stream(
    response: ChatResponse,
    pacing: StreamPacing | None = None,
    sleep: Sleep = asyncio.sleep,
) -> AsyncIterator[bytes]:
    """Replay a finished response as Anthropic SSE, one content block per index.

    Text blocks are split into paced ``text_delta`` events; ``tool_use`` blocks
    carry their whole input as a single ``input_json_delta``.
    """
    pacing = pacing or StreamPacing.from_settings()
    blocks = _streamable_blocks(response)

    yield _sse_event("message_start", _message_start(response))
    for index, block in enumerate(blocks):
        yield _block_start(index, block)
        if block.type == "text":
            for position, token in enumerate(split_stream_tokens(block.text or "")):
                if position and pacing.token_delay > 0:
                    await sleep(pacing.token_delay)
                yield _block_delta(index, {"type": "text_delta", "text": token})
        elif block.type == "tool_use":
            partial_json = json.dumps((block.model_extra or {}).get("input") or {}, ensure_ascii=False)
            yield _block_delta(index, {"type": "input_json_delta", "partial_json": partial_json})
        yield _sse_event("content_block_stop", {"type": "content_block_stop", "index": index})
        if index < len(blocks) - 1 and pacing.token_delay > 0:
            await sleep(pacing.token_delay)
    if blocks and pacing.tail_delay > 0:
        await sleep(pacing.tail_delay)
    yield _sse_event(
        "message_delta",
        {
            "type": "message_delta",
            "delta": {"stop_reason": response.stop_reason or "end_turn", "stop_sequence": None},
            "usage": {"output_tokens": response.usage.output_tokens},
        },
    )
    yield _sse_event("message_stop", {"type": "message_stop"})


def _build_streaming_response(generator: AsyncIterable[bytes], headers: dict[str, str] | None = None) -> StreamingResponse:
    merged = {
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    merged.update(headers or {})
    return StreamingResponse(generator, media_type="text/event-stream; charset=utf-8", headers=merged)
