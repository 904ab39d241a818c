"""Polling cycle that turns new store rows into viewer broadcasts."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

from app.schemas import Heartbeat, SensorBatch
from datastore.mock_telemetry import StoreUnavailableError
from services.broadcaster import Broadcaster, StreamKind
from services.interval_loop import IntervalLoop
from services.store_adapter import StoreAdapter
from services.watermarks import WatermarkTracker

logger = logging.getLogger(__name__)


class PollCycleScheduler:
    """Runs one tick per interval while at least one viewer is connected.

    Each tick pushes a ``sensor-delta`` for every sensor whose newest reading
    moves its watermark, then the recent alert, setting and personality
    batches, then a heartbeat. Ticks never overlap: a firing that arrives
    while a tick is in flight is skipped by the interval loop, and every tick
    holds ``sync_lock`` so snapshots for joining viewers cannot interleave.
    """

    def __init__(
        self,
        adapter: StoreAdapter,
        broadcaster: Broadcaster,
        watermarks: WatermarkTracker,
        sync_lock: asyncio.Lock,
        interval_seconds: float = 1.0,
        reading_limit: int = 100,
        history_limit: int = 10,
        slow_tick_ms: int = 500,
    ) -> None:
        self.adapter = adapter
        self.broadcaster = broadcaster
        self.watermarks = watermarks
        self.sync_lock = sync_lock
        self.reading_limit = reading_limit
        self.history_limit = history_limit
        self.slow_tick_ms = slow_tick_ms
        self.loop = IntervalLoop(interval_seconds, self.tick, name="poll-cycle")
        self._generation = 0
        self.tick_count = 0

    @property
    def running(self) -> bool:
        return self.loop.running

    def start(self) -> None:
        if self.running:
            return
        self._generation += 1
        self.watermarks.reset()
        self.loop.start()
        logger.info(
            "Data polling started",
            extra={"tick_ms": int(self.loop.interval * 1000)},
        )

    async def stop(self, cancel_inflight: bool = False) -> None:
        was_running = self.running
        self._generation += 1
        await self.loop.stop(cancel_inflight=cancel_inflight)
        if was_running:
            logger.info("Data polling stopped")

    async def tick(self) -> None:
        generation = self._generation
        started = time.perf_counter()

        async with self.sync_lock:
            await self._broadcast_sensor_deltas(generation)
            await self._broadcast_history(
                generation,
                (
                    (StreamKind.alerts_delta, self.adapter.recent_alerts),
                    (StreamKind.settings_delta, self.adapter.recent_setting_changes),
                    (StreamKind.personality_delta, self.adapter.recent_personality_changes),
                ),
            )
            if not self._is_stale(generation):
                await self.broadcaster.broadcast(
                    StreamKind.heartbeat, Heartbeat(timestamp=datetime.now(timezone.utc))
                )

        self.tick_count += 1
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if elapsed_ms > self.slow_tick_ms:
            logger.warning("Data polling tick was slow", extra={"tick_ms": elapsed_ms})

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    async def _broadcast_sensor_deltas(self, generation: int) -> None:
        try:
            sensor_ids = await self.adapter.list_sensor_ids()
        except StoreUnavailableError as exc:
            logger.warning(
                "Could not list sensors this cycle",
                extra={"stream": "readings", "reason": str(exc)},
            )
            return

        for sensor_id in sorted(sensor_ids):
            try:
                readings = await self.adapter.latest_readings(sensor_id, self.reading_limit)
            except StoreUnavailableError as exc:
                logger.warning(
                    "Could not fetch readings this cycle",
                    extra={"sensor_id": sensor_id, "reason": str(exc)},
                )
                continue

            if not readings or self._is_stale(generation):
                continue
            if not self.watermarks.advance(sensor_id, readings[0].timestamp):
                continue

            delivered = await self.broadcaster.broadcast_sensor_delta(
                SensorBatch(sensor_id=sensor_id, readings=readings)
            )
            logger.debug(
                "Broadcast sensor readings",
                extra={
                    "sensor_id": sensor_id,
                    "reading_count": len(readings),
                    "subscriber_count": delivered,
                },
            )

    async def _broadcast_history(
        self,
        generation: int,
        streams: Sequence[tuple[StreamKind, Callable[[int], Awaitable[list]]]],
    ) -> None:
        for kind, fetch in streams:
            try:
                items = await fetch(self.history_limit)
            except StoreUnavailableError as exc:
                logger.warning(
                    "Could not fetch history this cycle",
                    extra={"stream": kind.value, "reason": str(exc)},
                )
                continue
            if self._is_stale(generation):
                return
            await self.broadcaster.broadcast(kind, items)
