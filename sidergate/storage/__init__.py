"""In-memory session stores; constructed once per app and injected."""

from __future__ import annotations

from dataclasses import dataclass

from sidergate.storage.affinity import BackendAffinityStore
from sidergate.storage.conversations import ConversationStore
from sidergate.storage.sessions import SiderSessionStore


@dataclass(slots=True)
class SessionStores:
    conversations: ConversationStore
    sider_sessions: SiderSessionStore
    affinity: BackendAffinityStore


def create_stores() -> SessionStores:
    return SessionStores(
        conversations=ConversationStore(),
        sider_sessions=SiderSessionStore(),
        affinity=BackendAffinityStore(),
    )
