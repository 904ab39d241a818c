"""Operational statistics for the viewer dashboard panels."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import psutil

from app.schemas import DataStats, PerformanceStats, ServerStats, StatsBundle
from datastore.mock_telemetry import StoreUnavailableError
from models.records import Collection
from services.broadcaster import Broadcaster, StreamKind, Subscriber
from services.interval_loop import IntervalLoop
from services.store_adapter import StoreAdapter

logger = logging.getLogger(__name__)


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class StatsCollector:
    """Collects and broadcasts server, performance and data statistics.

    Runs on its own timer, independent of the poll cycle, and reads nothing
    from the watermark state. Each panel is computed separately; a failure in
    one yields that panel's zeroed defaults without affecting the others.
    """

    def __init__(
        self,
        adapter: StoreAdapter,
        broadcaster: Broadcaster,
        client_count: Callable[[], int],
        interval_seconds: float = 5.0,
        active_window_seconds: int = 300,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.adapter = adapter
        self.broadcaster = broadcaster
        self.client_count = client_count
        self.active_window = timedelta(seconds=active_window_seconds)
        self.clock = clock
        self.loop = IntervalLoop(
            interval_seconds, self.broadcast_stats, name="stats", fire_immediately=True
        )
        self._started_at = time.monotonic()
        self._process = psutil.Process()
        # Prime the counter; the first cpu_percent(None) call always reports 0.
        self._process.cpu_percent(None)

    @property
    def running(self) -> bool:
        return self.loop.running

    def start(self) -> None:
        if self.running:
            return
        self.loop.start()
        logger.info(
            "Server stats monitoring started",
            extra={"tick_ms": int(self.loop.interval * 1000)},
        )

    async def stop(self, cancel_inflight: bool = False) -> None:
        was_running = self.running
        await self.loop.stop(cancel_inflight=cancel_inflight)
        if was_running:
            logger.info("Server stats monitoring stopped")

    async def collect(self) -> StatsBundle:
        return StatsBundle(
            server=await self.collect_server_stats(),
            performance=self.collect_performance_stats(),
            data=await self.collect_data_stats(),
        )

    async def broadcast_stats(self) -> None:
        bundle = await self.collect()
        await self.broadcaster.broadcast(StreamKind.server_stats, bundle.server)
        await self.broadcaster.broadcast(StreamKind.performance_stats, bundle.performance)
        await self.broadcaster.broadcast(StreamKind.data_stats, bundle.data)

    async def send_stats(self, subscriber: Subscriber) -> None:
        bundle = await self.collect()
        await self.broadcaster.send_full(subscriber, StreamKind.server_stats, bundle.server)
        await self.broadcaster.send_full(subscriber, StreamKind.performance_stats, bundle.performance)
        await self.broadcaster.send_full(subscriber, StreamKind.data_stats, bundle.data)
        logger.info("Sent server statistics to client", extra={"subscriber_id": subscriber.id})

    async def collect_server_stats(self) -> ServerStats:
        try:
            sensor_ids = await self.adapter.list_sensor_ids()
            cutoff = self.clock() - self.active_window
            active = 0
            last_update: Optional[datetime] = None
            for sensor_id in sensor_ids:
                newest = await self.adapter.latest_readings(sensor_id, 1)
                if not newest:
                    continue
                stamp = newest[0].timestamp
                if stamp > cutoff:
                    active += 1
                if last_update is None or stamp > last_update:
                    last_update = stamp
            connected = await self.adapter.ping()
        except StoreUnavailableError as exc:
            logger.warning("Error collecting server stats", extra={"reason": str(exc)})
            return ServerStats()

        return ServerStats(
            total_sensors=len(sensor_ids),
            active_sensors=active,
            last_update_time=last_update,
            store_connected=connected,
        )

    def collect_performance_stats(self) -> PerformanceStats:
        try:
            with self._process.oneshot():
                cpu = self._process.cpu_percent(None)
                rss = self._process.memory_info().rss
        except psutil.Error as exc:
            logger.warning("Error collecting performance stats", extra={"reason": str(exc)})
            return PerformanceStats(client_count=self.client_count())

        return PerformanceStats(
            uptime=round(time.monotonic() - self._started_at, 3),
            cpu_usage=cpu,
            memory_usage=rss,
            client_count=self.client_count(),
        )

    async def collect_data_stats(self) -> DataStats:
        today = _start_of_day(self.clock())
        try:
            return DataStats(
                total_data_points=await self.adapter.count_all(Collection.readings),
                today_data_points=await self.adapter.count_since(Collection.readings, today),
                total_alerts=await self.adapter.count_all(Collection.alerts),
                today_alerts=await self.adapter.count_since(Collection.alerts, today),
                store_size=await self.adapter.size_estimate(),
            )
        except StoreUnavailableError as exc:
            logger.warning("Error collecting data stats", extra={"reason": str(exc)})
            return DataStats()
