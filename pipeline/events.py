from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol

from common.schemas import EventType, SessionEvent


class EventSink(Protocol):
    """Where a session sends its events, and how it learns the consumer left."""

    async def send(self, event: SessionEvent) -> None: ...

    async def is_connected(self) -> bool: ...


class CollectingSink:
    """Keeps every event in memory. Used by the blocking endpoint and by tests."""

    def __init__(self, liveness: Optional[Callable[[], Awaitable[bool]]] = None) -> None:
        self.events: list[SessionEvent] = []
        self._liveness = liveness
        self.closed = False

    async def send(self, event: SessionEvent) -> None:
        if not self.closed:
            self.events.append(event)

    async def is_connected(self) -> bool:
        if not self.closed and self._liveness is not None and not await self._liveness():
            self.closed = True
        return not self.closed

    def close(self) -> None:
        self.closed = True

    def of_type(self, event_type: EventType) -> list[SessionEvent]:
        return [e for e in self.events if e.type == event_type]

    @property
    def types(self) -> list[EventType]:
        return [e.type for e in self.events]

    def last(self) -> SessionEvent | None:
        return self.events[-1] if self.events else None
