"""Fingerprint-keyed logical conversation store.

Only a fallback correlation mechanism: a conversation is recognised by hashing
the role and content prefix of its first few messages.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace

from sidergate.core.models import Message
from sidergate.util.logger import logger


_FINGERPRINT_MESSAGES = 3
_FINGERPRINT_PREFIX_CHARS = 50


@dataclass(slots=True)
class LogicalConversation:
    id: str
    last_message_id: str
    message_count: int
    created_at: float
    last_activity: float


def _content_prefix(message: Message) -> str:
    if isinstance(message.content, str):
        content = message.content
    else:
        content = json.dumps([block.model_dump(exclude_none=True) for block in message.content], ensure_ascii=False)
    return content[:_FINGERPRINT_PREFIX_CHARS]


def fingerprint(messages: Sequence[Message]) -> str:
    seed = "|".join(f"{m.role}:{_content_prefix(m)}" for m in messages[:_FINGERPRINT_MESSAGES])
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]


class ConversationStore:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._conversations: dict[str, LogicalConversation] = {}

    def _message_id(self, conversation_id: str, index: int) -> str:
        return f"{conversation_id}_msg_{index}_{int(self._clock() * 1000)}"

    def get_or_create(self, messages: Sequence[Message]) -> LogicalConversation:
        key = f"conv_{fingerprint(messages)}"
        now = self._clock()
        with self._lock:
            conversation = self._conversations.get(key)
            if conversation is None:
                conversation = LogicalConversation(
                    id=key,
                    last_message_id="",
                    message_count=0,
                    created_at=now,
                    last_activity=now,
                )
                self._conversations[key] = conversation
                logger.info("logical conversation created id=%s messages=%d", key, len(messages))
            else:
                conversation.last_activity = now
                logger.info(
                    "logical conversation continued id=%s previous=%d current=%d",
                    key,
                    conversation.message_count,
                    len(messages),
                )
            conversation.message_count = len(messages)
            conversation.last_message_id = self._message_id(key, conversation.message_count)
            return replace(conversation)

    def parent_message_id(self, conversation: LogicalConversation, messages: Sequence[Message]) -> str:
        if len(messages) <= 1:
            return ""
        return self._message_id(conversation.id, len(messages) - 1)

    def cleanup_expired(self, max_age_hours: float = 24) -> int:
        max_age = float(max_age_hours) * 3600
        now = self._clock()
        with self._lock:
            expired = [key for key, conv in self._conversations.items() if now - conv.last_activity > max_age]
            for key in expired:
                del self._conversations[key]
        if expired:
            logger.info("cleaned up expired logical conversations count=%d", len(expired))
        return len(expired)

    def stats(self) -> dict:
        now = self._clock()
        with self._lock:
            conversations = list(self._conversations.values())
        return {
            "totalConversations": len(conversations),
            "conversations": [
                {
                    "id": conv.id,
                    "messageCount": conv.message_count,
                    "age": round(now - conv.created_at),
                    "lastActivity": round(now - conv.last_activity),
                }
                for conv in conversations
            ],
        }
