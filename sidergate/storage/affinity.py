"""Conversation id -> last backend used, for tool-result continuity."""

from __future__ import annotations

import threading

from sidergate.config.backends import Backend
from sidergate.util.logger import logger, short_id


class BackendAffinityStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._backends: dict[str, Backend] = {}

    def record(self, cid: str, backend: Backend) -> None:
        with self._lock:
            self._backends[cid] = backend
        logger.debug("session backend recorded cid=%s backend=%s", short_id(cid), backend)

    def get(self, cid: str) -> Backend | None:
        with self._lock:
            return self._backends.get(cid)

    def clear(self) -> int:
        with self._lock:
            count = len(self._backends)
            self._backends.clear()
        logger.debug("cleaned up session backend records count=%d", count)
        return count

    def stats(self) -> dict[str, int]:
        with self._lock:
            values = list(self._backends.values())
        sider = sum(1 for backend in values if backend == "sider")
        return {
            "totalSessions": len(values),
            "siderSessions": sider,
            "anthropicSessions": len(values) - sider,
        }
