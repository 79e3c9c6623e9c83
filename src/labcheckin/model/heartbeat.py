"""Periodic health check that drives reconnects, syncs and cache refreshes."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol


logger = logging.getLogger(__name__)


class Checkable(Protocol):
    async def check_connection(self) -> bool: ...


class HealthMonitor:
    """Call check_connection() every interval seconds.

    The sleep function is injectable so tests can run ticks without waiting.
    A failing tick is logged and the next tick still runs.
    """

    interval: float

    def __init__(
        self,
        service: Checkable,
        interval: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.service = service
        self.interval = interval
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._last_state: Optional[bool] = None

    async def tick(self) -> bool:
        """Run one health check. Never raises."""
        try:
            connected = await self.service.check_connection()
        except Exception:
            logger.exception("Health check failed.")
            return False
        if connected != self._last_state:
            logger.info("Connection state: %s", "online" if connected else "local")
            self._last_state = connected
        return connected

    async def run(self, iterations: Optional[int] = None) -> None:
        """Tick forever, or the given number of times."""
        count = 0
        while True:
            await self.tick()
            count += 1
            if iterations is not None and count >= iterations:
                return
            await self._sleep(self.interval)

    def start(self) -> asyncio.Task:
        """Run in the background on the current event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="health-monitor")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
