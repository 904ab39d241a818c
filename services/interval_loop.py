"""
Fixed-interval timer for background work.

The timer fires on a fixed cadence measured from when it was started. Each
firing runs the callback in its own task. When the previous run is still in
flight the firing is skipped instead of starting a second, overlapping run,
so callbacks never execute concurrently with themselves.

Usage:
    loop = IntervalLoop(1.0, poll_once, name="poll")
    loop.start()
    ...
    await loop.stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class IntervalLoop:
    """
    Serialized interval timer.

    Attributes:
        interval: Seconds between firings.
        callback: Async function run on each firing.
        fire_immediately: Run the first firing on start instead of one
            interval later.
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "unnamed",
        fire_immediately: bool = False,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("Interval must be positive.")
        self.interval = interval_seconds
        self.callback = callback
        self.name = name
        self.fire_immediately = fire_immediately

        self._timer: Optional[asyncio.Task[None]] = None
        self._inflight: Optional[asyncio.Task[None]] = None

        self._skipped_count = 0
        self._execution_count = 0

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self) -> None:
        """Arm the timer. Must be called from within a running event loop."""
        if self.running:
            return
        self._timer = asyncio.create_task(self._run(), name=f"interval-loop:{self.name}")

    async def stop(self, cancel_inflight: bool = False) -> None:
        """Disarm the timer.

        A run already in flight is left to finish unless ``cancel_inflight``
        is set.
        """
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass

        inflight = self._inflight
        if cancel_inflight and inflight is not None and not inflight.done():
            inflight.cancel()
            try:
                await inflight
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_run = loop.time() + (0 if self.fire_immediately else self.interval)

        while True:
            delay = next_run - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)

            self._fire()

            # Catch up on the schedule without queueing missed firings.
            now = loop.time()
            next_run += self.interval
            if next_run <= now:
                missed = int((now - next_run) // self.interval) + 1
                next_run += missed * self.interval

    def _fire(self) -> None:
        if self.busy:
            self._skipped_count += 1
            logger.debug(
                "Interval loop %s still busy, skipping firing",
                self.name,
                extra={"skipped": self._skipped_count},
            )
            return
        self._inflight = asyncio.create_task(self._execute(), name=f"interval-run:{self.name}")

    async def _execute(self) -> None:
        try:
            await self.callback()
            self._execution_count += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Interval loop %s callback failed", self.name)

    @property
    def skipped_count(self) -> int:
        """Firings skipped because a run was still in flight."""
        return self._skipped_count

    @property
    def execution_count(self) -> int:
        return self._execution_count
