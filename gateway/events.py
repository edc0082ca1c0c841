from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from fastapi import Request, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from common.schemas import SessionEvent

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class QueueSink:
    """Buffers events for a Server-Sent Events response."""

    def __init__(self, request: Request | None = None) -> None:
        self._queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue()
        self._request = request
        self.closed = False

    async def send(self, event: SessionEvent) -> None:
        if not self.closed:
            await self._queue.put(event)

    async def is_connected(self) -> bool:
        if not self.closed and self._request is not None and await self._request.is_disconnected():
            logger.info("Stream closed by client")
            self.closed = True
        return not self.closed

    def close(self) -> None:
        self.closed = True

    async def finish(self) -> None:
        await self._queue.put(None)

    async def stream(self) -> AsyncIterator[str]:
        while True:
            event = await self._queue.get()
            if event is None:
                break
            yield event.to_sse()


class WebSocketSink:
    """Sends events as JSON text frames; notices the disconnect through ``watch``."""

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws
        self.closed = False

    async def send(self, event: SessionEvent) -> None:
        if self.closed:
            return
        try:
            await self._ws.send_text(event.model_dump_json())
        except (WebSocketDisconnect, RuntimeError):
            logger.info("WebSocket closed while sending %s", event.type.value)
            self.closed = True

    async def is_connected(self) -> bool:
        if self._ws.client_state != WebSocketState.CONNECTED:
            self.closed = True
        return not self.closed

    def close(self) -> None:
        self.closed = True

    async def watch(self) -> None:
        """Drain incoming frames until the client goes away."""
        try:
            while True:
                message = await self._ws.receive()
                if message.get("type") == "websocket.disconnect":
                    break
        except (WebSocketDisconnect, RuntimeError):
            pass
        finally:
            self.closed = True
