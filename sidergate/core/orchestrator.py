"""Per-request pipeline: decide, translate, call, translate back, fall back once."""

from __future__ import annotations

from dataclasses import dataclass

from sidergate.adapters.anthropic_api.client import AnthropicApiClient
from sidergate.adapters.anthropic_compat.mapper import (
    count_tokens,
    to_chat_response,
    to_sider_request,
    to_sider_request_with_history,
)
from sidergate.adapters.sider.client import SiderClient
from sidergate.adapters.sider.conversation import SiderConversationClient
from sidergate.config.backends import Backend, BackendConfig, backend_display_name, other_backend
from sidergate.core.errors import UpstreamError
from sidergate.core.models import ChatRequest, ChatResponse
from sidergate.observability.logging import log_event
from sidergate.routing.engine import RouterEngine, RoutingDecision
from sidergate.storage.conversations import ConversationStore
from sidergate.storage.sessions import PLACEHOLDER_CONVERSATION_ID, SiderSessionStore
from sidergate.util.logger import logger, short_id


@dataclass(slots=True)
class OrchestratorResult:
    response: ChatResponse
    backend: Backend
    decision: RoutingDecision


def resolve_conversation_id(request: ChatRequest, explicit: str | None) -> str | None:
    if explicit:
        return explicit
    # 多轮且带 assistant 历史但没给会话 ID：归入共享的占位会话
    if len(request.messages) > 1 and any(m.role == "assistant" for m in request.messages):
        logger.info("inferred continuous conversation from message history")
        return PLACEHOLDER_CONVERSATION_ID
    return None


class Orchestrator:
    def __init__(
        self,
        config: BackendConfig,
        engine: RouterEngine,
        sider_client: SiderClient | None,
        anthropic_client: AnthropicApiClient | None,
        session_store: SiderSessionStore,
        history_client: SiderConversationClient | None = None,
        conversation_store: ConversationStore | None = None,
    ) -> None:
        self.config = config
        self.engine = engine
        self.sider_client = sider_client
        self.anthropic_client = anthropic_client
        self.session_store = session_store
        self.history_client = history_client
        self.conversation_store = conversation_store

    async def handle(
        self,
        request: ChatRequest,
        auth_token: str,
        conversation_id: str | None = None,
        parent_message_id: str | None = None,
    ) -> OrchestratorResult:
        cid = resolve_conversation_id(request, conversation_id)
        self._track_logical_conversation(request, cid)
        decision = self.engine.decide(request, cid)
        backend = decision.backend
        try:
            response = await self._call_backend(backend, request, auth_token, cid, parent_message_id)
        except UpstreamError as exc:
            logger.error("%s failed error=%s", backend_display_name(backend), exc)
            fallback = other_backend(backend)
            if not (decision.allow_fallback and self.config.routing.auto_fallback and self.config.is_enabled(fallback)):
                raise
            log_event("backend_fallback", source=backend, target=fallback, rule=decision.rule_id, error=str(exc))
            try:
                response = await self._call_backend(fallback, request, auth_token, cid, parent_message_id)
            except UpstreamError as fallback_exc:
                logger.error("fallback to %s also failed error=%s", backend_display_name(fallback), fallback_exc)
                raise exc
            logger.info("fallback to %s succeeded", backend_display_name(fallback))
            backend = fallback

        affinity_cid = cid
        if backend == "sider" and not affinity_cid and response.sider_session is not None:
            affinity_cid = response.sider_session.conversation_id
        if affinity_cid:
            self.engine.record_session_backend(affinity_cid, backend)
        logger.info("request completed via %s cid=%s", backend_display_name(backend), short_id(affinity_cid))
        return OrchestratorResult(response=response, backend=backend, decision=decision)

    def _track_logical_conversation(self, request: ChatRequest, cid: str | None) -> None:
        # 没有可用的真实会话 ID 时按消息指纹关联
        if self.conversation_store is None or (cid and not self.session_store.is_placeholder_id(cid)):
            return
        conversation = self.conversation_store.get_or_create(request.messages)
        logger.debug("logical conversation id=%s messages=%d", conversation.id, conversation.message_count)

    async def _call_backend(
        self,
        backend: Backend,
        request: ChatRequest,
        auth_token: str,
        cid: str | None,
        parent_message_id: str | None,
    ) -> ChatResponse:
        if backend == "anthropic":
            return await self._call_anthropic(request)
        return await self._call_sider(request, auth_token, cid, parent_message_id)

    async def _call_anthropic(self, request: ChatRequest) -> ChatResponse:
        if self.anthropic_client is None:
            raise UpstreamError("Anthropic API not configured")
        # 上游始终非流式调用，流式输出由网关模拟
        return await self.anthropic_client.send(request.model_copy(update={"stream": False}))

    async def _call_sider(
        self,
        request: ChatRequest,
        auth_token: str,
        cid: str | None,
        parent_message_id: str | None,
    ) -> ChatResponse:
        if self.sider_client is None:
            raise UpstreamError("Sider AI not configured")
        token = self.config.sider.auth_token or auth_token
        if cid and len(request.messages) > 1:
            sider_request = await to_sider_request_with_history(
                request, token, cid, self.history_client, self.session_store
            )
        else:
            sider_request = to_sider_request(request, cid, self.session_store)
        if parent_message_id:
            sider_request.parent_message_id = parent_message_id
        parsed = await self.sider_client.chat(
            sider_request,
            token,
            placeholder=self.session_store.is_placeholder_id(cid),
        )
        input_tokens = count_tokens([m.model_dump(exclude_none=True) for m in request.messages])
        return to_chat_response(parsed, request.model, input_tokens=input_tokens)
