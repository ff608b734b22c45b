"""Anthropic Messages transport models."""

from __future__ import annotations

import time
import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class _Block(BaseModel):
    model_config = ConfigDict(extra="allow")


class TextBlock(_Block):
    type: Literal["text"] = "text"
    text: str = ""


class ImageBlock(_Block):
    type: Literal["image"] = "image"
    source: dict[str, Any] = Field(default_factory=dict)


class ToolUseBlock(_Block):
    type: Literal["tool_use"] = "tool_use"
    id: str = ""
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(_Block):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = ""
    content: Any = None
    is_error: bool | None = None


class OtherBlock(_Block):
    """Any block kind this gateway does not interpret (documents, thinking, ...)."""

    type: str


_KNOWN_BLOCKS = frozenset({"text", "image", "tool_use", "tool_result"})


def _block_tag(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return kind if kind in _KNOWN_BLOCKS else "other"


ContentBlock = Annotated[
    Union[
        Annotated[TextBlock, Tag("text")],
        Annotated[ImageBlock, Tag("image")],
        Annotated[ToolUseBlock, Tag("tool_use")],
        Annotated[ToolResultBlock, Tag("tool_result")],
        Annotated[OtherBlock, Tag("other")],
    ],
    Discriminator(_block_tag),
]


class Message(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Literal["user", "assistant"]
    content: Union[str, list[ContentBlock]]


class Tool(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = Field(default_factory=dict)


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    model: str
    messages: list[Message]
    system: Union[str, list[dict[str, Any]], None] = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: list[str] | None = None
    tools: list[Tool] | None = None
    stream: bool = False

    @property
    def system_text(self) -> str:
        if isinstance(self.system, str):
            return self.system
        if isinstance(self.system, list):
            parts = [str(item.get("text", "")) for item in self.system if isinstance(item, dict)]
            return "\n".join(part for part in parts if part)
        return ""

    def to_payload(self, **overrides: Any) -> dict[str, Any]:
        payload = self.model_dump(exclude_none=True)
        payload.update(overrides)
        return payload


class Usage(BaseModel):
    model_config = ConfigDict(extra="allow")

    input_tokens: int = 0
    output_tokens: int = 0


class OutputBlock(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "text"
    text: str | None = None


class SiderMessageIds(BaseModel):
    user: str = ""
    assistant: str = ""


class SiderSessionInfo(BaseModel):
    conversation_id: str
    message_ids: SiderMessageIds | None = None


def new_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class ChatResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=new_message_id)
    type: Literal["message"] = "message"
    role: Literal["assistant"] = "assistant"
    content: list[OutputBlock] = Field(default_factory=list)
    model: str = ""
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: Usage = Field(default_factory=Usage)
    sider_session: SiderSessionInfo | None = None

    @property
    def text(self) -> str:
        return "".join(block.text or "" for block in self.content if block.type == "text")

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(exclude_none=True)
        payload["stop_reason"] = self.stop_reason
        return payload


def error_payload(error_type: str, message: str, **extra: Any) -> dict[str, Any]:
    error: dict[str, Any] = {"type": error_type, "message": message}
    error.update(extra)
    return {"type": "error", "error": error}
