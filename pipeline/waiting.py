from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

Sleep = Callable[[float], Awaitable[None]]
Liveness = Callable[[], Awaitable[bool]]


async def _always_alive() -> bool:
    return True


class CancellableWait:
    """Sleeps in short ticks, checking between ticks whether the consumer is still there.

    ``sleep`` is injectable so tests can run waits without wall-clock delays.
    """

    def __init__(
        self,
        is_alive: Liveness = _always_alive,
        sleep: Sleep = asyncio.sleep,
        tick: float = 1.0,
    ) -> None:
        self._is_alive = is_alive
        self._sleep = sleep
        self._tick = tick if tick > 0 else 1.0

    async def wait(self, seconds: float) -> bool:
        """Return True once ``seconds`` have elapsed, False as soon as the consumer is gone."""
        remaining = seconds
        while remaining > 0:
            if not await self._is_alive():
                return False
            step = min(self._tick, remaining)
            await self._sleep(step)
            remaining -= step
        return await self._is_alive()
