from __future__ import annotations

import asyncio
import logging

from pipeline.orchestrator import TranscriptionSession

logger = logging.getLogger(__name__)


class SessionManager:
    """Registry of running transcription sessions, capped per process."""

    def __init__(self, max_sessions: int = 10) -> None:
        self._max = max_sessions
        self._sessions: dict[str, TranscriptionSession] = {}
        self._tasks: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    async def register(self, session: TranscriptionSession) -> TranscriptionSession:
        async with self._lock:
            if len(self._sessions) >= self._max:
                raise RuntimeError(f"Max sessions ({self._max}) reached")
            if session.session_id in self._sessions:
                raise RuntimeError(f"Session {session.session_id} already exists")
            self._sessions[session.session_id] = session
            logger.info("Session created: %s (%d active)", session.session_id, len(self._sessions))
            return session

    async def remove(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)
            logger.info("Session removed: %s (%d active)", session_id, len(self._sessions))

    def get(self, session_id: str) -> TranscriptionSession | None:
        return self._sessions.get(session_id)

    def spawn(self, coro) -> asyncio.Task:
        """Run a session coroutine in the background, holding a reference until it finishes."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def active_count(self) -> int:
        return len(self._sessions)
