"""
Scheduler - Non-overlapping periodic asyncio timers.

Used for the lease sweep and the notification digest flush. A tick is
skipped if the previous run of the same task is still in flight; errors
are logged and the loop continues.
"""

import asyncio
import inspect
from typing import Any, Callable, Optional

from leasebid.utils.logger import get_logger

logger = get_logger("scheduler")


class PeriodicTask:
    """
    Runs `func` every `interval` seconds.
    
    `func` may be a coroutine function or a plain callable.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], Any]):
        self.name = name
        self.interval = interval
        self.func = func
        self.runs = 0
        self.skipped = 0
        self.failures = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> bool:
        return self._running

    async def run_once(self) -> bool:
        """
        Execute one tick.
        
        Returns:
            False if skipped because a previous run is still in flight
        """
        if self._running:
            self.skipped += 1
            logger.debug(f"{self.name}: previous run still in flight, skipping tick")
            return False

        self._running = True
        try:
            result = self.func()
            if inspect.isawaitable(result):
                await result
            self.runs += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            logger.error(f"{self.name} run failed: {e}")
        finally:
            self._running = False
        return True

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()

    def start(self) -> asyncio.Task:
        """Start the loop on the running event loop."""
        if self.is_started:
            return self._task
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info(f"{self.name} started (every {self.interval:g}s)")
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
        logger.info(f"{self.name} stopped")


__all__ = ["PeriodicTask"]
