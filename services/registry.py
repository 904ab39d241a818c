"""Viewer membership, initial snapshots and background loop lifecycle."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List

from app.schemas import SensorBatch
from datastore.mock_telemetry import StoreUnavailableError
from services.broadcaster import Broadcaster, StreamKind, Subscriber
from services.scheduler import PollCycleScheduler
from services.stats import StatsCollector
from services.store_adapter import StoreAdapter

logger = logging.getLogger(__name__)


class SubscriberRegistry:
    """Tracks connected viewers and reference-counts the background loops.

    The first snapshot is sent and the viewer registered under ``sync_lock``,
    the same lock every poll tick holds. A joining viewer therefore has its
    full snapshot before it can observe any broadcast.
    """

    def __init__(
        self,
        adapter: StoreAdapter,
        broadcaster: Broadcaster,
        scheduler: PollCycleScheduler,
        stats: StatsCollector,
        sync_lock: asyncio.Lock,
        reading_limit: int = 100,
        history_limit: int = 100,
    ) -> None:
        self.adapter = adapter
        self.broadcaster = broadcaster
        self.scheduler = scheduler
        self.stats = stats
        self.sync_lock = sync_lock
        self.reading_limit = reading_limit
        self.history_limit = history_limit
        self._subscribers: Dict[str, Subscriber] = {}
        self._lifecycle_lock = asyncio.Lock()

    @property
    def subscribers(self) -> List[Subscriber]:
        return list(self._subscribers.values())

    @property
    def count(self) -> int:
        return len(self._subscribers)

    def __contains__(self, subscriber: object) -> bool:
        return isinstance(subscriber, Subscriber) and subscriber.id in self._subscribers

    async def on_connect(self, subscriber: Subscriber) -> None:
        async with self.sync_lock:
            await self._send_snapshot(subscriber)
            self._subscribers[subscriber.id] = subscriber
            logger.info(
                "Client connected",
                extra={"subscriber_id": subscriber.id, "subscriber_count": self.count},
            )

        await self._start_loops()

    async def on_disconnect(self, subscriber: Subscriber) -> None:
        if self._subscribers.pop(subscriber.id, None) is None:
            return
        logger.info(
            "Client disconnected",
            extra={"subscriber_id": subscriber.id, "subscriber_count": self.count},
        )
        await self._stop_loops_if_idle()

    async def on_request_full_sync(self, subscriber: Subscriber) -> None:
        async with self.sync_lock:
            await self._send_snapshot(subscriber)

    async def on_request_server_stats(self, subscriber: Subscriber) -> None:
        await self.stats.send_stats(subscriber)

    async def _start_loops(self) -> None:
        async with self._lifecycle_lock:
            if not self._subscribers:
                return
            if not self.scheduler.running:
                self.scheduler.start()
            if not self.stats.running:
                self.stats.start()

    async def _stop_loops_if_idle(self) -> None:
        # A viewer may register while a stop is awaited; it restarts the loops
        # once this lock is released.
        async with self._lifecycle_lock:
            if self._subscribers:
                return
            await self.scheduler.stop()
            if self._subscribers:
                return
            await self.stats.stop()

    async def _send_snapshot(self, subscriber: Subscriber) -> None:
        logger.info("Sending full dataset to client", extra={"subscriber_id": subscriber.id})
        try:
            sensor_ids = await self.adapter.list_sensor_ids()
        except StoreUnavailableError as exc:
            logger.warning(
                "Could not list sensors for snapshot",
                extra={"subscriber_id": subscriber.id, "reason": str(exc)},
            )
            sensor_ids = set()

        for sensor_id in sorted(sensor_ids):
            try:
                readings = await self.adapter.latest_readings(sensor_id, self.reading_limit)
            except StoreUnavailableError as exc:
                logger.warning(
                    "Could not fetch readings for snapshot",
                    extra={"sensor_id": sensor_id, "reason": str(exc)},
                )
                continue
            if not readings:
                continue
            await self.broadcaster.send_full(
                subscriber,
                StreamKind.sensor_full,
                SensorBatch(sensor_id=sensor_id, readings=readings),
            )

        history = (
            (StreamKind.alerts_full, self.adapter.recent_alerts),
            (StreamKind.settings_full, self.adapter.recent_setting_changes),
            (StreamKind.personality_full, self.adapter.recent_personality_changes),
        )
        for kind, fetch in history:
            try:
                items = await fetch(self.history_limit)
            except StoreUnavailableError as exc:
                logger.warning(
                    "Could not fetch history for snapshot",
                    extra={"stream": kind.value, "reason": str(exc)},
                )
                continue
            await self.broadcaster.send_full(subscriber, kind, items)
