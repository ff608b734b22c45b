import pytest

from sidergate.config.backends import (
    AnthropicBackendConfig,
    BackendConfig,
    RoutingConfig,
    SiderBackendConfig,
)
from sidergate.core.errors import RoutingError
from sidergate.core.models import ChatRequest
from sidergate.routing.engine import RouterEngine
from sidergate.storage.affinity import BackendAffinityStore


def _config(sider=True, anthropic=True, default="sider", prefer_sider=True, auto_fallback=True) -> BackendConfig:
    return BackendConfig(
        sider=SiderBackendConfig(
            enabled=sider,
            api_url="https://sider.example/api/chat/v1/completions",
            conversation_url="https://sider.example/api/chat/v1/conversation/messages",
            auth_token="sider-token-123456" if sider else "",
        ),
        anthropic=AnthropicBackendConfig(
            enabled=anthropic,
            base_url="https://api.anthropic.com",
            api_key="sk-ant-test-key" if anthropic else "",
        ),
        routing=RoutingConfig(
            default_backend=default,
            auto_fallback=auto_fallback,
            prefer_sider_for_simple_chat=prefer_sider,
        ),
    )


def _request(tools=None, messages=None) -> ChatRequest:
    payload = {"model": "claude-4.5-sonnet", "messages": messages or [{"role": "user", "content": "hello"}]}
    if tools:
        payload["tools"] = [{"name": name, "input_schema": {}} for name in tools]
    return ChatRequest.model_validate(payload)


_FEEDBACK_MESSAGES = [
    {"role": "user", "content": "run it"},
    {"role": "assistant", "content": [{"type": "tool_use", "id": "tu_1", "name": "Bash", "input": {}}]},
    {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "tu_1", "content": "ok"}]},
]


def test_tool_result_feedback_keeps_previous_backend_without_fallback():
    affinity = BackendAffinityStore()
    affinity.record("conv-1", "sider")
    engine = RouterEngine(_config(), affinity)
    decision = engine.decide(_request(tools=["Bash"], messages=_FEEDBACK_MESSAGES), "conv-1")
    assert decision.backend == "sider"
    assert decision.rule_id == "rule_1_tool_result_continuity"
    assert decision.confidence == 1.0
    assert decision.allow_fallback is False


def test_tool_result_without_affinity_falls_through_to_tool_rules():
    engine = RouterEngine(_config(), BackendAffinityStore())
    decision = engine.decide(_request(tools=["Bash"], messages=_FEEDBACK_MESSAGES), "conv-unknown")
    assert decision.rule_id == "rule_2_code_tools"
    assert decision.backend == "anthropic"


def test_code_tools_route_to_full_backend():
    decision = RouterEngine(_config(), BackendAffinityStore()).decide(_request(tools=["Bash", "search"]))
    assert decision.backend == "anthropic"
    assert decision.rule_id == "rule_2_code_tools"
    assert decision.confidence == 1.0
    assert decision.allow_fallback is True


def test_code_tools_degrade_to_sider_when_full_backend_disabled():
    decision = RouterEngine(_config(anthropic=False), BackendAffinityStore()).decide(_request(tools=["Edit"]))
    assert decision.backend == "sider"
    assert decision.rule_id == "rule_2_code_tools_fallback"
    assert decision.confidence == 0.2
    assert decision.allow_fallback is False


def test_generic_tools_follow_code_tool_policy():
    engine = RouterEngine(_config(), BackendAffinityStore())
    decision = engine.decide(_request(tools=["mcp__jira__search", "search"]))
    assert decision.backend == "anthropic"
    assert decision.rule_id == "rule_3_generic_tools"

    degraded = RouterEngine(_config(anthropic=False), BackendAffinityStore()).decide(_request(tools=["custom_tool"]))
    assert degraded.rule_id == "rule_3_generic_tools_fallback"
    assert degraded.confidence == 0.2
    assert degraded.allow_fallback is False


@pytest.mark.parametrize("message_count", [1, 3])
def test_native_tools_route_to_sider_regardless_of_message_count(message_count):
    messages = [{"role": "user", "content": "q"}, {"role": "assistant", "content": "a"}, {"role": "user", "content": "q2"}]
    decision = RouterEngine(_config(), BackendAffinityStore()).decide(
        _request(tools=["search", "create_image"], messages=messages[:message_count])
    )
    assert decision.backend == "sider"
    assert decision.rule_id == "rule_4_native_tools"
    assert decision.confidence == 0.9
    assert decision.allow_fallback is True


def test_native_tools_without_sider_use_default_rule():
    decision = RouterEngine(_config(sider=False, default="anthropic"), BackendAffinityStore()).decide(_request(tools=["search"]))
    assert decision.backend == "anthropic"
    assert decision.rule_id == "rule_6_default"
    assert decision.confidence == 0.6


def test_simple_chat_prefers_lightweight_backend():
    decision = RouterEngine(_config(), BackendAffinityStore()).decide(_request())
    assert decision.backend == "sider"
    assert decision.rule_id == "rule_5_simple_chat_prefer_lightweight"
    assert decision.confidence == 0.8


def test_simple_chat_uses_full_backend_when_not_preferring_sider():
    decision = RouterEngine(_config(prefer_sider=False), BackendAffinityStore()).decide(_request())
    assert decision.backend == "anthropic"
    assert decision.rule_id == "rule_5_simple_chat_full"
    assert decision.confidence == 0.7
    assert decision.allow_fallback is True


def test_simple_chat_last_resort_sider_disallows_fallback():
    decision = RouterEngine(_config(anthropic=False, prefer_sider=False), BackendAffinityStore()).decide(_request())
    assert decision.backend == "sider"
    assert decision.rule_id == "rule_5_simple_chat_fallback_lightweight"
    assert decision.confidence == 0.6
    assert decision.allow_fallback is False


def test_rule_six_uses_single_enabled_backend_when_default_disabled():
    engine = RouterEngine(_config(sider=False, default="sider"), BackendAffinityStore())
    # tool_call with only native tools and no sider -> rule 6
    decision = engine.decide(_request(tools=["web_search"]))
    assert decision.backend == "anthropic"
    assert decision.rule_id == "rule_6_only_enabled"
    assert decision.allow_fallback is False


def test_no_backend_enabled_is_an_invariant_violation():
    engine = RouterEngine(_config(sider=False, anthropic=False), BackendAffinityStore())
    with pytest.raises(RoutingError):
        engine.decide(_request(tools=["search"]))


def test_decide_does_not_record_affinity():
    affinity = BackendAffinityStore()
    engine = RouterEngine(_config(), affinity)
    engine.decide(_request(), "conv-9")
    assert engine.get_session_backend("conv-9") is None
    engine.record_session_backend("conv-9", "anthropic")
    assert engine.get_session_backend("conv-9") == "anthropic"
    assert engine.stats() == {"totalSessions": 1, "siderSessions": 0, "anthropicSessions": 1}
    assert engine.cleanup_sessions() == 1
    assert engine.stats()["totalSessions"] == 0
