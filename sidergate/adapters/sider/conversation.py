"""Sider conversation history API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sidergate.adapters.anthropic_compat.upstream import _forward_json, _safe_error_detail
from sidergate.adapters.sider.client import build_sider_headers
from sidergate.config.backends import SiderBackendConfig
from sidergate.core.errors import UpstreamError
from sidergate.util.logger import logger, short_id


class SiderHistoryMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    parent_message_id: str = ""
    role: str = ""
    model: str = ""
    multi_content: list[dict[str, Any]] = Field(default_factory=list)


class SiderHistory(BaseModel):
    model_config = ConfigDict(extra="allow")

    conversation: dict[str, Any] = Field(default_factory=dict)
    messages: list[SiderHistoryMessage] = Field(default_factory=list)
    has_more: bool = False

    @property
    def latest_message_id(self) -> str:
        return self.messages[-1].id if self.messages else ""


class SiderConversationClient:
    def __init__(self, config: SiderBackendConfig) -> None:
        self.config = config

    async def get_history(self, cid: str, auth_token: str, limit: int | None = None) -> SiderHistory:
        page = limit or self.config.history_limit
        logger.info("fetching sider conversation history cid=%s limit=%d", short_id(cid), page)
        status, body = await _forward_json(
            self.config.conversation_url,
            {"cid": cid, "limit": page},
            build_sider_headers(auth_token),
            self.config.history_timeout_seconds,
        )
        if status >= 400:
            raise UpstreamError(
                f"Sider conversation API error: {status}",
                status_code=status,
                body=_safe_error_detail(body),
            )
        if not isinstance(body, dict):
            raise UpstreamError("Sider conversation API returned a non-JSON body", status_code=status)
        if body.get("code", 0) != 0:
            raise UpstreamError(f"Sider conversation API error: {body.get('msg') or 'Unknown error'}", status_code=status)
        try:
            history = SiderHistory.model_validate(body.get("data") or {})
        except ValidationError as exc:
            raise UpstreamError(f"Malformed Sider conversation history: {exc.error_count()} errors") from exc
        logger.info(
            "sider conversation history fetched cid=%s messages=%d has_more=%s",
            short_id(cid),
            len(history.messages),
            history.has_more,
        )
        return history

    async def conversation_exists(self, cid: str, auth_token: str) -> bool:
        try:
            await self.get_history(cid, auth_token, limit=1)
        except UpstreamError as exc:
            logger.debug("sider conversation unavailable cid=%s error=%s", short_id(cid), exc)
            return False
        return True
