"""Analysis Scheduler — fires a cycle on a fixed interval while armed.

The timer task and the cycles it spawns are separate tasks: disarming
cancels the timer only, so a cycle already talking to the model runs to
completion while no further ticks fire.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class AnalysisScheduler:
    """Cooperative interval timer on the running event loop."""

    def __init__(self, interval_s: float, tick: Callable[[], Awaitable[Any]]):
        self.interval_s = interval_s
        self._tick = tick
        self._timer: asyncio.Task | None = None
        self._cycles: set[asyncio.Task] = set()
        self._ticks = 0

    def arm(self) -> None:
        if self.armed:
            return
        self._timer = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Scheduler armed (every {self.interval_s:.1f}s)")

    def disarm(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        logger.info("Scheduler disarmed")

    @property
    def armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def ticks(self) -> int:
        return self._ticks

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            self._ticks += 1
            cycle = asyncio.get_running_loop().create_task(self._tick())
            self._cycles.add(cycle)
            cycle.add_done_callback(self._on_cycle_done)

    def _on_cycle_done(self, cycle: asyncio.Task) -> None:
        self._cycles.discard(cycle)
        if cycle.cancelled():
            return
        exc = cycle.exception()
        if exc is not None:
            logger.error("Analysis cycle crashed", exc_info=exc)

    async def drain(self) -> None:
        """Wait for cycles already spawned to settle."""
        if self._cycles:
            await asyncio.gather(*list(self._cycles), return_exceptions=True)
