"""Wiring of the synchronization engine components."""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Optional

from datastore.mock_telemetry import MockTelemetryStore, build_default_store
from models.records import RawDocument
from services.broadcaster import Broadcaster
from services.publisher import LivePublisher
from services.registry import SubscriberRegistry
from services.scheduler import PollCycleScheduler
from services.stats import StatsCollector
from services.store_adapter import StoreAdapter
from services.watermarks import WatermarkTracker
from settings import Settings, get_settings

logger = logging.getLogger(__name__)


class SyncEngine:
    """Owns the shared state and background loops of one engine instance."""

    def __init__(self, store: MockTelemetryStore, settings: Settings) -> None:
        self.settings = settings
        self.store = store
        self.adapter = StoreAdapter(store, channel_count=settings.sensor_channel_count)
        self.watermarks = WatermarkTracker()
        self.sync_lock = asyncio.Lock()
        self.broadcaster = Broadcaster(lambda: self.registry.subscribers)
        self.scheduler = PollCycleScheduler(
            adapter=self.adapter,
            broadcaster=self.broadcaster,
            watermarks=self.watermarks,
            sync_lock=self.sync_lock,
            interval_seconds=settings.poll_interval,
            reading_limit=settings.reading_batch_limit,
            history_limit=settings.history_delta_limit,
            slow_tick_ms=settings.slow_tick_warning_ms,
        )
        self.stats = StatsCollector(
            adapter=self.adapter,
            broadcaster=self.broadcaster,
            client_count=lambda: self.registry.count,
            interval_seconds=settings.stats_interval,
            active_window_seconds=settings.active_window_seconds,
        )
        self.publisher = LivePublisher(
            adapter=self.adapter,
            broadcaster=self.broadcaster,
            watermarks=self.watermarks,
            sync_lock=self.sync_lock,
            reading_limit=settings.reading_batch_limit,
            history_limit=settings.history_delta_limit,
        )
        self.registry = SubscriberRegistry(
            adapter=self.adapter,
            broadcaster=self.broadcaster,
            scheduler=self.scheduler,
            stats=self.stats,
            sync_lock=self.sync_lock,
            reading_limit=settings.reading_batch_limit,
            history_limit=settings.history_snapshot_limit,
        )

    async def check_store(self) -> None:
        """Fail startup when the store cannot be reached."""
        if not await self.adapter.ping():
            logger.critical("Telemetry store is unreachable at startup")
            raise RuntimeError("Telemetry store is unreachable.")

    async def shutdown(self) -> None:
        await self.scheduler.stop(cancel_inflight=True)
        await self.stats.stop(cancel_inflight=True)

    async def publish_reading(self, document: RawDocument) -> int:
        """Push a freshly ingested reading without waiting for the next poll."""
        return await self.publisher.publish_reading(document)

    async def publish_alert(self, document: RawDocument) -> int:
        return await self.publisher.publish_alert(document)

    async def publish_setting_change(self, document: RawDocument) -> int:
        return await self.publisher.publish_setting_change(document)

    async def publish_personality_update(self, document: RawDocument) -> int:
        return await self.publisher.publish_personality_update(document)


@lru_cache
def build_default_engine(store_path: Optional[str] = None) -> SyncEngine:
    """Factory that wires the engine with the default store and settings."""
    return SyncEngine(store=build_default_store(store_path), settings=get_settings())
