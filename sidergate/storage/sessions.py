"""In-memory Sider session store: conversation id -> latest message ids.

State is ephemeral by contract. A process restart loses every session and
clients start new backend conversations.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from sidergate.util.logger import logger, short_id


# 客户端多轮对话但未提供会话 ID 时使用的本地占位 ID，绝不能发给 Sider
PLACEHOLDER_CONVERSATION_ID = "continuous-conversation"
PLACEHOLDER_DEFAULT_MODEL = "claude-3.7-sonnet-think"


@dataclass(slots=True)
class ConversationSession:
    cid: str
    user_message_id: str
    assistant_message_id: str
    model: str
    created_at: float
    last_activity: float
    message_count: int


class SiderSessionStore:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, ConversationSession] = {}

    @staticmethod
    def is_placeholder_id(cid: str | None) -> bool:
        return cid == PLACEHOLDER_CONVERSATION_ID

    def save(self, cid: str, user_message_id: str, assistant_message_id: str, model: str) -> ConversationSession:
        now = self._clock()
        with self._lock:
            session = self._sessions.get(cid)
            if session is None:
                session = ConversationSession(
                    cid=cid,
                    user_message_id=user_message_id,
                    assistant_message_id=assistant_message_id,
                    model=model,
                    created_at=now,
                    last_activity=now,
                    message_count=1,
                )
                self._sessions[cid] = session
                logger.info("sider session created cid=%s model=%s", short_id(cid), model)
            else:
                session.user_message_id = user_message_id
                session.assistant_message_id = assistant_message_id
                session.model = model
                session.last_activity = now
                session.message_count += 1
                logger.info(
                    "sider session updated cid=%s messages=%s model=%s",
                    short_id(cid),
                    session.message_count,
                    model,
                )
            return replace(session)

    def get(self, cid: str) -> ConversationSession | None:
        with self._lock:
            session = self._sessions.get(cid)
            return replace(session) if session is not None else None

    def get_next_parent_id(self, cid: str) -> str:
        """Return the assistant message id the next turn must link to, or ''."""

        with self._lock:
            session = self._sessions.get(cid)
            if session is None:
                logger.debug("no sider session for cid=%s", short_id(cid))
                return ""
            return session.assistant_message_id

    def get_or_create_placeholder_session(self) -> ConversationSession:
        now = self._clock()
        with self._lock:
            session = self._sessions.get(PLACEHOLDER_CONVERSATION_ID)
            if session is None:
                session = ConversationSession(
                    cid=PLACEHOLDER_CONVERSATION_ID,
                    user_message_id="",
                    assistant_message_id="",
                    model=PLACEHOLDER_DEFAULT_MODEL,
                    created_at=now,
                    last_activity=now,
                    message_count=0,
                )
                self._sessions[PLACEHOLDER_CONVERSATION_ID] = session
                logger.info("created placeholder continuous conversation session")
            return replace(session)

    def update_placeholder(self, user_message_id: str, assistant_message_id: str, model: str) -> ConversationSession:
        """Advance the inferred continuous conversation to the latest turn."""

        self.get_or_create_placeholder_session()
        now = self._clock()
        with self._lock:
            session = self._sessions[PLACEHOLDER_CONVERSATION_ID]
            session.user_message_id = user_message_id
            session.assistant_message_id = assistant_message_id
            session.model = model
            session.last_activity = now
            session.message_count += 1
            logger.info(
                "placeholder session updated assistant_msg=%s messages=%d",
                short_id(assistant_message_id),
                session.message_count,
            )
            return replace(session)

    def cleanup_expired(self, max_age_hours: float = 24) -> int:
        max_age = float(max_age_hours) * 3600
        now = self._clock()
        with self._lock:
            expired = [cid for cid, session in self._sessions.items() if now - session.last_activity > max_age]
            for cid in expired:
                del self._sessions[cid]
        if expired:
            logger.info("cleaned up expired sider sessions count=%d", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def stats(self) -> dict:
        now = self._clock()
        with self._lock:
            sessions = list(self._sessions.values())
        return {
            "totalSessions": len(sessions),
            "sessions": [
                {
                    "cid": short_id(session.cid),
                    "model": session.model,
                    "messageCount": session.message_count,
                    "age": round(now - session.created_at),
                    "lastActivity": round(now - session.last_activity),
                }
                for session in sessions
            ],
        }
