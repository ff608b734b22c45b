import json

import pytest

from sidergate.adapters.anthropic_compat import stream_utils
from sidergate.adapters.anthropic_compat.stream_utils import (
    StreamPacing,
    _build_streaming_response,
    split_stream_tokens,
    synthesize_stream,
)
from sidergate.core.models import ChatResponse, OutputBlock, Usage


def _response(text: str) -> ChatResponse:
    return ChatResponse(
        id="msg_test",
        content=[OutputBlock(type="text", text=text)],
        model="claude-4.5-sonnet",
        stop_reason="end_turn",
        usage=Usage(input_tokens=12, output_tokens=3),
    )


def _parse(chunks: list[bytes]) -> list[tuple[str, dict]]:
    events = []
    for chunk in chunks:
        text = chunk.decode("utf-8")
        assert text.endswith("\n\n")
        event_line, data_line = text.strip().split("\n")
        assert event_line.startswith("event: ")
        assert data_line.startswith("data: ")
        events.append((event_line[len("event: "):], json.loads(data_line[len("data: "):])))
    return events


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


async def _collect(response, pacing, sleep):
    return [chunk async for chunk in synthesize_stream(response, pacing, sleep=sleep)]


def test_split_stream_tokens_keeps_whitespace():
    assert split_stream_tokens("Hello  big\nworld") == ["Hello", "  ", "big", "\n", "world"]
    assert split_stream_tokens(" lead") == [" ", "lead"]
    assert split_stream_tokens("") == []


@pytest.mark.asyncio
async def test_synthesized_stream_event_order_and_payloads():
    sleep = RecordingSleep()
    chunks = await _collect(_response("Hello brave world"), StreamPacing(token_delay=0.15, tail_delay=0.1), sleep)
    events = _parse(chunks)
    names = [name for name, _ in events]
    assert names == [
        "message_start",
        "content_block_start",
        "content_block_delta",
        "content_block_delta",
        "content_block_delta",
        "content_block_delta",
        "content_block_delta",
        "content_block_stop",
        "message_delta",
        "message_stop",
    ]
    for name, payload in events:
        assert payload["type"] == name

    start = events[0][1]["message"]
    assert start["id"] == "msg_test"
    assert start["content"] == []
    assert start["stop_reason"] is None
    assert start["usage"] == {"input_tokens": 12, "output_tokens": 0}

    deltas = [payload["delta"]["text"] for name, payload in events if name == "content_block_delta"]
    assert "".join(deltas) == "Hello brave world"

    message_delta = events[-2][1]
    assert message_delta["delta"] == {"stop_reason": "end_turn", "stop_sequence": None}
    assert message_delta["usage"] == {"output_tokens": 3}

    # 首个 token 不等待，其余每个 token 前 0.15s，结尾再 0.1s
    assert sleep.delays == [0.15] * 4 + [0.1]


@pytest.mark.asyncio
async def test_synthesized_stream_for_empty_text_frames_message_only():
    sleep = RecordingSleep()
    chunks = await _collect(_response(""), StreamPacing(), sleep)
    events = _parse(chunks)
    assert [name for name, _ in events] == ["message_start", "message_delta", "message_stop"]
    assert events[1][1]["delta"]["stop_reason"] == "end_turn"
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_synthesized_stream_carries_tool_use_block():
    response = ChatResponse(
        id="msg_tool",
        content=[OutputBlock.model_validate({"type": "tool_use", "id": "toolu_1", "name": "Bash", "input": {"command": "ls"}})],
        model="claude-sonnet-4-5",
        stop_reason="tool_use",
        usage=Usage(input_tokens=20, output_tokens=8),
    )
    sleep = RecordingSleep()
    events = _parse(await _collect(response, StreamPacing(token_delay=0.15, tail_delay=0.1), sleep))

    assert [name for name, _ in events] == [
        "message_start",
        "content_block_start",
        "content_block_delta",
        "content_block_stop",
        "message_delta",
        "message_stop",
    ]
    assert events[1][1]["index"] == 0
    assert events[1][1]["content_block"] == {"type": "tool_use", "id": "toolu_1", "name": "Bash", "input": {}}
    delta = events[2][1]["delta"]
    assert delta["type"] == "input_json_delta"
    assert json.loads(delta["partial_json"]) == {"command": "ls"}
    assert events[4][1]["delta"]["stop_reason"] == "tool_use"
    assert events[4][1]["usage"] == {"output_tokens": 8}
    assert sleep.delays == [0.1]


@pytest.mark.asyncio
async def test_synthesized_stream_indexes_mixed_blocks_in_order():
    response = ChatResponse(
        content=[
            OutputBlock(type="text", text="Listing files"),
            OutputBlock.model_validate({"type": "tool_use", "id": "toolu_2", "name": "Bash", "input": {"command": "ls -la"}}),
        ],
        model="claude-sonnet-4-5",
        stop_reason="tool_use",
    )
    events = _parse(await _collect(response, StreamPacing(token_delay=0, tail_delay=0), RecordingSleep()))

    starts = [payload for name, payload in events if name == "content_block_start"]
    assert [(start["index"], start["content_block"]["type"]) for start in starts] == [(0, "text"), (1, "tool_use")]
    text_deltas = [p["delta"]["text"] for n, p in events if n == "content_block_delta" and p["index"] == 0]
    assert "".join(text_deltas) == "Listing files"
    json_deltas = [p["delta"] for n, p in events if n == "content_block_delta" and p["index"] == 1]
    assert [d["type"] for d in json_deltas] == ["input_json_delta"]
    stops = [payload["index"] for name, payload in events if name == "content_block_stop"]
    assert stops == [0, 1]

    streamed = {"index_0": "".join(text_deltas), "tool_input": json.loads(json_deltas[0]["partial_json"])}
    payload_content = response.to_payload()["content"]
    assert streamed == {"index_0": payload_content[0]["text"], "tool_input": payload_content[1]["input"]}


@pytest.mark.asyncio
async def test_closing_stream_stops_emission():
    sleep = RecordingSleep()
    stream = synthesize_stream(_response("one two three four"), StreamPacing(token_delay=0.15, tail_delay=0.1), sleep=sleep)

    first = await stream.__anext__()
    assert first.startswith(b"event: message_start")
    await stream.aclose()

    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_zero_pacing_never_sleeps():
    sleep = RecordingSleep()
    chunks = await _collect(_response("a b c"), StreamPacing(token_delay=0, tail_delay=0), sleep)
    assert len(chunks) == 1 + 1 + 5 + 3
    assert sleep.delays == []


def test_stream_pacing_from_settings(monkeypatch):
    monkeypatch.setattr(stream_utils.settings, "stream_token_delay_ms", 20)
    monkeypatch.setattr(stream_utils.settings, "stream_tail_delay_ms", 0)
    assert StreamPacing.from_settings() == StreamPacing(token_delay=0.02, tail_delay=0.0)


def test_streaming_response_headers():
    async def gen():
        yield b""

    response = _build_streaming_response(gen(), {"X-Conversation-ID": "cid-1"})
    assert response.media_type == "text/event-stream; charset=utf-8"
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    assert response.headers["connection"] == "keep-alive"
    assert response.headers["x-accel-buffering"] == "no"
    assert response.headers["x-conversation-id"] == "cid-1"
