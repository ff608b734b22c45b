"""Sider chat client: POST the translated request and parse its event stream."""

from __future__ import annotations

from contextlib import aclosing

from sidergate.adapters.anthropic_compat.upstream import _forward_stream_lines
from sidergate.adapters.sider.models import SiderParsedResponse, SiderRequest
from sidergate.adapters.sider.stream import SiderStreamParser
from sidergate.config.backends import SiderBackendConfig
from sidergate.storage.sessions import SiderSessionStore
from sidergate.util.logger import logger, short_id


SIDER_ORIGIN = "chrome-extension://dhoenijjpgpeimemopealfcbiecgceod"
SIDER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/139.0.0.0 Safari/537.36 Edg/139.0.0.0"
)


def build_sider_headers(auth_token: str) -> dict[str, str]:
    # 上游按浏览器扩展来源校验，以下头缺一不可
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {auth_token}",
        "Origin": SIDER_ORIGIN,
        "User-Agent": SIDER_USER_AGENT,
        "X-Time-Zone": "Asia/Shanghai",
        "X-App-Version": "5.13.0",
        "X-App-Name": "ChitChat_Edge_Ext",
    }


class SiderClient:
    def __init__(self, config: SiderBackendConfig, session_store: SiderSessionStore) -> None:
        self.config = config
        self.session_store = session_store

    async def chat(self, request: SiderRequest, auth_token: str, *, placeholder: bool = False) -> SiderParsedResponse:
        """Send one turn; message_start ids are persisted as they arrive.

        ``placeholder`` marks a request made on behalf of the inferred
        continuous conversation, whose local session must follow the turn.
        """
        logger.info(
            "calling sider model=%s cid=%s parent=%s text_len=%d",
            request.model,
            short_id(request.cid),
            short_id(request.parent_message_id),
            len(request.text),
        )

        def persist(cid: str, user_id: str, assistant_id: str, model: str) -> None:
            if cid:
                self.session_store.save(cid, user_id, assistant_id, model)
            if placeholder or not cid:
                self.session_store.update_placeholder(user_id, assistant_id, model)

        parser = SiderStreamParser(on_message_start=persist)
        lines = _forward_stream_lines(
            self.config.api_url,
            request.to_payload(),
            build_sider_headers(auth_token),
            self.config.timeout_seconds,
            expected_content_type="text/event-stream",
        )
        # 收到 [DONE] 提前 break 时同步关闭上游流
        async with aclosing(lines):
            async for line in lines:
                parser.feed_line(line)
                if parser.done:
                    break
        return parser.finish()
