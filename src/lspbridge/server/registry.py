"""Registry of live bridge sessions, one per WebSocket connection."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lspbridge.server.bridge import BridgeSession

log = logging.getLogger(__name__)


class SessionRegistry:
    """Tracks live sessions for status reporting and shutdown.

    Sessions never share state or processes; the registry only lists them.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, BridgeSession] = {}
        self._lock = asyncio.Lock()

    async def add(self, session: BridgeSession) -> None:
        async with self._lock:
            self._sessions[session.id] = session
        log.debug("Session %s registered (%d active)", session.id, len(self._sessions))

    async def remove(self, session: BridgeSession) -> None:
        async with self._lock:
            self._sessions.pop(session.id, None)
        log.debug("Session %s removed (%d active)", session.id, len(self._sessions))

    def get(self, session_id: str) -> BridgeSession | None:
        return self._sessions.get(session_id)

    def count(self) -> int:
        return len(self._sessions)

    async def close_all(self) -> None:
        """Stop every live session; each one terminates its own process."""
        async with self._lock:
            sessions = list(self._sessions.values())

        for session in sessions:
            session.stop()
        if sessions:
            log.info("Stopping %d bridge session(s)", len(sessions))
