"""Backend selection: first matching rule wins."""

from __future__ import annotations

from dataclasses import dataclass

from sidergate.config.backends import Backend, BackendConfig, backend_display_name
from sidergate.core.analyzer import RequestAnalysis, RequestAnalyzer
from sidergate.core.errors import RoutingError
from sidergate.core.models import ChatRequest
from sidergate.observability.logging import log_event
from sidergate.storage.affinity import BackendAffinityStore
from sidergate.util.logger import logger


@dataclass(frozen=True, slots=True)
class RoutingDecision:
    backend: Backend
    reason: str
    confidence: float
    allow_fallback: bool
    rule_id: str


class RouterEngine:
    def __init__(
        self,
        config: BackendConfig,
        affinity: BackendAffinityStore,
        analyzer: RequestAnalyzer | None = None,
    ) -> None:
        self.config = config
        self.affinity = affinity
        self.analyzer = analyzer or RequestAnalyzer(debug=config.routing.debug_mode)

    def decide(self, request: ChatRequest, conversation_id: str | None = None) -> RoutingDecision:
        analysis = self.analyzer.analyze(request)
        decision = self.apply_rules(analysis, conversation_id)
        self._log_decision(decision, analysis)
        return decision

    def apply_rules(self, analysis: RequestAnalysis, conversation_id: str | None = None) -> RoutingDecision:
        sider_on = self.config.sider.enabled
        anthropic_on = self.config.anthropic.enabled

        # tool_result 必须回到发起 tool_use 的后端
        if analysis.type == "tool_result_feedback" and conversation_id:
            previous = self.affinity.get(conversation_id)
            if previous is not None:
                return RoutingDecision(
                    backend=previous,
                    reason=f"Maintain backend for tool result feedback (previous: {backend_display_name(previous)})",
                    confidence=1.0,
                    allow_fallback=False,
                    rule_id="rule_1_tool_result_continuity",
                )

        if analysis.has_code_tools:
            return self._full_backend_for_tools(
                "rule_2_code_tools",
                f"Request contains code execution tools: {', '.join(analysis.code_tool_names[:3])}",
                anthropic_on,
            )

        if analysis.has_generic_tools:
            return self._full_backend_for_tools(
                "rule_3_generic_tools",
                f"Request contains external tools: {', '.join(analysis.generic_tool_names[:3])}",
                anthropic_on,
            )

        if analysis.has_native_tools and sider_on:
            return RoutingDecision(
                backend="sider",
                reason=f"Request contains only Sider native tools: {', '.join(analysis.tool_names)}",
                confidence=0.9,
                allow_fallback=True,
                rule_id="rule_4_native_tools",
            )

        if analysis.type == "simple_chat":
            if self.config.routing.prefer_sider_for_simple_chat and sider_on:
                return RoutingDecision(
                    backend="sider",
                    reason="Simple chat, prefer lightweight backend",
                    confidence=0.8,
                    allow_fallback=True,
                    rule_id="rule_5_simple_chat_prefer_lightweight",
                )
            if anthropic_on:
                return RoutingDecision(
                    backend="anthropic",
                    reason="Simple chat, using Anthropic API",
                    confidence=0.7,
                    allow_fallback=True,
                    rule_id="rule_5_simple_chat_full",
                )
            if sider_on:
                return RoutingDecision(
                    backend="sider",
                    reason="Simple chat, fallback to lightweight backend",
                    confidence=0.6,
                    allow_fallback=False,
                    rule_id="rule_5_simple_chat_fallback_lightweight",
                )

        default = self.config.routing.default_backend
        if self.config.is_enabled(default):
            return RoutingDecision(
                backend=default,
                reason=f"Default backend (configured: {backend_display_name(default)})",
                confidence=0.6,
                allow_fallback=True,
                rule_id="rule_6_default",
            )
        enabled = self.config.enabled_backends()
        if enabled:
            return RoutingDecision(
                backend=enabled[0],
                reason=f"Default backend unavailable, using {backend_display_name(enabled[0])}",
                confidence=0.6,
                allow_fallback=False,
                rule_id="rule_6_only_enabled",
            )

        # 启动时已校验，走到这里说明配置被绕过
        raise RoutingError("No backend available. This should not happen.")

    def _full_backend_for_tools(self, rule_id: str, reason: str, anthropic_on: bool) -> RoutingDecision:
        if anthropic_on:
            return RoutingDecision(
                backend="anthropic",
                reason=reason,
                confidence=1.0,
                allow_fallback=True,
                rule_id=rule_id,
            )
        logger.warning("%s: Anthropic API not configured, degrading to Sider (tools will not work)", rule_id)
        return RoutingDecision(
            backend="sider",
            reason="Anthropic API required but not available, fallback to Sider (tools will not work)",
            confidence=0.2,
            allow_fallback=False,
            rule_id=f"{rule_id}_fallback",
        )

    def _log_decision(self, decision: RoutingDecision, analysis: RequestAnalysis) -> None:
        if not self.config.routing.debug_mode:
            logger.info("routing backend=%s rule=%s", decision.backend, decision.rule_id)
            return
        log_event(
            "routing_decision",
            backend=decision.backend,
            rule=decision.rule_id,
            reason=decision.reason,
            confidence=decision.confidence,
            allow_fallback=decision.allow_fallback,
            request_type=analysis.type,
            tool_count=analysis.tool_count,
        )

    def record_session_backend(self, conversation_id: str, backend: Backend) -> None:
        self.affinity.record(conversation_id, backend)

    def get_session_backend(self, conversation_id: str) -> Backend | None:
        return self.affinity.get(conversation_id)

    def cleanup_sessions(self) -> int:
        return self.affinity.clear()

    def stats(self) -> dict[str, int]:
        return self.affinity.stats()
