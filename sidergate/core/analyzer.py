"""Request feature extraction used by the routing engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from sidergate.core.models import ChatRequest, ToolResultBlock
from sidergate.observability.logging import log_event


RequestType = Literal["simple_chat", "tool_call", "tool_result_feedback"]

# Host-environment actions that only the full-capability backend can drive.
CODE_EXECUTION_TOOLS = frozenset(
    {
        "Task",
        "Bash",
        "Read",
        "Write",
        "Edit",
        "Glob",
        "Grep",
        "WebFetch",
        "WebSearch",
        "TodoWrite",
        "NotebookEdit",
        "Skill",
        "SlashCommand",
        "ExitPlanMode",
        "AskUserQuestion",
    }
)

# Tools the Sider backend executes natively.
NATIVE_TOOLS = frozenset(
    {
        "search",
        "web_search",
        "internet_search",
        "web_browse",
        "browse_web",
        "web_browsing",
        "create_image",
        "generate_image",
        "image_generation",
    }
)


@dataclass(slots=True)
class RequestAnalysis:
    type: RequestType
    tool_count: int = 0
    message_count: int = 0
    has_tool_result: bool = False
    tool_names: list[str] = field(default_factory=list)
    code_tool_names: list[str] = field(default_factory=list)
    generic_tool_names: list[str] = field(default_factory=list)
    native_tool_names: list[str] = field(default_factory=list)

    @property
    def has_code_tools(self) -> bool:
        return bool(self.code_tool_names)

    @property
    def has_generic_tools(self) -> bool:
        return bool(self.generic_tool_names)

    @property
    def has_native_tools(self) -> bool:
        return bool(self.native_tool_names)

    @property
    def is_multi_turn(self) -> bool:
        return self.message_count > 1


def classify_tool(name: str) -> str:
    if name in CODE_EXECUTION_TOOLS:
        return "code"
    if name in NATIVE_TOOLS:
        return "native"
    # 未识别的工具按 MCP/外部工具处理，需要完整能力后端
    return "generic"


def has_tool_result(request: ChatRequest) -> bool:
    for message in request.messages:
        if message.role != "user" or isinstance(message.content, str):
            continue
        if any(isinstance(block, ToolResultBlock) for block in message.content):
            return True
    return False


class RequestAnalyzer:
    def __init__(self, *, debug: bool = False) -> None:
        self.debug = debug

    def analyze(self, request: ChatRequest) -> RequestAnalysis:
        tools = request.tools or []
        feedback = has_tool_result(request)
        if feedback:
            request_type: RequestType = "tool_result_feedback"
        elif tools:
            request_type = "tool_call"
        else:
            request_type = "simple_chat"

        analysis = RequestAnalysis(
            type=request_type,
            tool_count=len(tools),
            message_count=len(request.messages),
            has_tool_result=feedback,
        )
        buckets = {
            "code": analysis.code_tool_names,
            "native": analysis.native_tool_names,
            "generic": analysis.generic_tool_names,
        }
        for tool in tools:
            analysis.tool_names.append(tool.name)
            buckets[classify_tool(tool.name)].append(tool.name)

        if self.debug:
            log_event(
                "request_analysis",
                type=analysis.type,
                messages=analysis.message_count,
                tool_result=analysis.has_tool_result,
                code_tools=analysis.code_tool_names,
                generic_tools=analysis.generic_tool_names,
                native_tools=analysis.native_tool_names,
            )
        return analysis
