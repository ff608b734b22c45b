from sidergate.core.analyzer import RequestAnalyzer, classify_tool, has_tool_result
from sidergate.core.models import ChatRequest


def _request(messages=None, tools=None) -> ChatRequest:
    payload = {
        "model": "claude-3.7-sonnet",
        "messages": messages or [{"role": "user", "content": "hi"}],
    }
    if tools is not None:
        payload["tools"] = [{"name": name, "input_schema": {"type": "object"}} for name in tools]
    return ChatRequest.model_validate(payload)


def test_plain_chat_is_simple_chat():
    analysis = RequestAnalyzer().analyze(_request())
    assert analysis.type == "simple_chat"
    assert analysis.tool_count == 0
    assert analysis.message_count == 1
    assert not analysis.is_multi_turn
    assert not analysis.has_code_tools and not analysis.has_generic_tools and not analysis.has_native_tools


def test_declared_tools_make_tool_call_and_are_bucketed():
    analysis = RequestAnalyzer().analyze(_request(tools=["Bash", "search", "mcp__github__create_issue"]))
    assert analysis.type == "tool_call"
    assert analysis.code_tool_names == ["Bash"]
    assert analysis.native_tool_names == ["search"]
    assert analysis.generic_tool_names == ["mcp__github__create_issue"]
    assert analysis.tool_names == ["Bash", "search", "mcp__github__create_issue"]


def test_tool_result_block_wins_over_declared_tools():
    messages = [
        {"role": "user", "content": "list files"},
        {"role": "assistant", "content": [{"type": "tool_use", "id": "tu_1", "name": "Bash", "input": {"command": "ls"}}]},
        {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "tu_1", "content": "a.txt"}]},
    ]
    request = _request(messages=messages, tools=["Bash"])
    analysis = RequestAnalyzer().analyze(request)
    assert has_tool_result(request)
    assert analysis.type == "tool_result_feedback"
    assert analysis.has_tool_result
    assert analysis.is_multi_turn


def test_tool_result_in_assistant_message_is_ignored():
    messages = [
        {"role": "user", "content": "x"},
        {"role": "assistant", "content": [{"type": "tool_result", "tool_use_id": "tu_1", "content": "odd"}]},
    ]
    assert not has_tool_result(_request(messages=messages))


def test_unknown_tool_defaults_to_generic():
    assert classify_tool("Read") == "code"
    assert classify_tool("web_search") == "native"
    assert classify_tool("something_custom") == "generic"
    assert classify_tool("bash") == "generic"


def test_debug_analysis_logs_event(monkeypatch):
    events = []
    monkeypatch.setattr("sidergate.core.analyzer.log_event", lambda event, **payload: events.append((event, payload)))
    RequestAnalyzer(debug=True).analyze(_request(tools=["Grep"]))
    assert events and events[0][0] == "request_analysis"
    assert events[0][1]["code_tools"] == ["Grep"]
