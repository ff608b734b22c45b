"""Sider chat wire protocol: request body, SSE envelope and parsed result."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class SiderMultiContent(BaseModel):
    type: Literal["text"] = "text"
    text: str
    user_input_text: str


class SiderRequest(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    cid: str = ""
    parent_message_id: str = ""
    model: str
    from_: str = Field(default="chat", alias="from")
    client_prompt: dict[str, Any] = Field(default_factory=dict)
    multi_content: list[SiderMultiContent]
    prompt_templates: list[dict[str, Any]] = Field(default_factory=list)
    tools: dict[str, Any] = Field(default_factory=lambda: {"auto": []})

    @property
    def text(self) -> str:
        return self.multi_content[0].text if self.multi_content else ""

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---- SSE event union ----


class _Event(BaseModel):
    model_config = ConfigDict(extra="allow")

    model: str = ""


class CreditInfoEvent(_Event):
    type: Literal["credit_info"] = "credit_info"
    credit_info: dict[str, Any] = Field(default_factory=dict)


class MessageStart(BaseModel):
    cid: str = ""
    user_message_id: str = ""
    assistant_message_id: str = ""


class MessageStartEvent(_Event):
    type: Literal["message_start"] = "message_start"
    message_start: MessageStart | None = None


class ReasoningContent(BaseModel):
    status: str = ""
    text: str = ""


class ReasoningContentEvent(_Event):
    type: Literal["reasoning_content"] = "reasoning_content"
    reasoning_content: ReasoningContent | None = None


class TextEvent(_Event):
    type: Literal["text"] = "text"
    text: str = ""


class ToolCall(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = ""
    name: str = ""
    status: str = ""
    progress: Any = None
    result: Any = None
    error: str | None = None


class ToolCallStartEvent(_Event):
    type: Literal["tool_call_start"] = "tool_call_start"
    tool_call: ToolCall | None = None


class ToolCallProgressEvent(_Event):
    type: Literal["tool_call_progress"] = "tool_call_progress"
    tool_call: ToolCall | None = None


class ToolCallResultEvent(_Event):
    type: Literal["tool_call_result"] = "tool_call_result"
    tool_call: ToolCall | None = None


class UnknownEvent(_Event):
    type: str = ""


_KNOWN_EVENTS = frozenset(
    {
        "credit_info",
        "message_start",
        "reasoning_content",
        "text",
        "tool_call_start",
        "tool_call_progress",
        "tool_call_result",
    }
)


def _event_tag(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return kind if kind in _KNOWN_EVENTS else "unknown"


SiderEvent = Annotated[
    Union[
        Annotated[CreditInfoEvent, Tag("credit_info")],
        Annotated[MessageStartEvent, Tag("message_start")],
        Annotated[ReasoningContentEvent, Tag("reasoning_content")],
        Annotated[TextEvent, Tag("text")],
        Annotated[ToolCallStartEvent, Tag("tool_call_start")],
        Annotated[ToolCallProgressEvent, Tag("tool_call_progress")],
        Annotated[ToolCallResultEvent, Tag("tool_call_result")],
        Annotated[UnknownEvent, Tag("unknown")],
    ],
    Discriminator(_event_tag),
]


class SiderEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: int = 0
    msg: str = ""
    data: SiderEvent | None = None


# ---- parsed result ----

ToolStatus = Literal["start", "processing", "finish"]


@dataclass(slots=True)
class ToolInvocation:
    tool_id: str
    tool_name: str
    status: ToolStatus = "start"
    result: Any = None
    error: str | None = None


@dataclass(slots=True)
class SiderParsedResponse:
    model: str = ""
    text_parts: list[str] = field(default_factory=list)
    reasoning_parts: list[str] = field(default_factory=list)
    tool_results: list[ToolInvocation] = field(default_factory=list)
    credit_info: dict[str, Any] | None = None
    conversation_id: str | None = None
    user_message_id: str | None = None
    assistant_message_id: str | None = None

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    @property
    def reasoning_text(self) -> str:
        return "".join(self.reasoning_parts)

    def find_tool(self, tool_id: str) -> ToolInvocation | None:
        for tool in self.tool_results:
            if tool.tool_id == tool_id:
                return tool
        return None
