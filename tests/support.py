"""Shared builders and fakes for the engine tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

from datastore.mock_telemetry import MockTelemetryStore, StoreUnavailableError
from models.records import Collection
from services.broadcaster import ChannelClosedError, Subscriber
from services.engine import SyncEngine
from settings import Settings

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

NORMAL_TEMPS = [22.5, 23.1, 22.8, 23.0, 22.9, 23.2, 22.7, 22.6, 23.1, 22.9, 23.0, 22.8, 23.1, 22.7, 22.9, 23.0]

BASE_SETTINGS = Settings(
    store_path=None,
    poll_interval_ms=1000,
    stats_interval_ms=5000,
    slow_tick_warning_ms=500,
    reading_batch_limit=100,
    history_snapshot_limit=100,
    history_delta_limit=10,
    active_window_seconds=300,
    sensor_channel_count=16,
    log_level="INFO",
)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def reading_doc(
    sensor_id: str,
    timestamp: datetime,
    temperatures: Optional[List[Any]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    document: Dict[str, Any] = {
        "sensor_id": sensor_id,
        "created_at": timestamp,
        "temperature_data": list(NORMAL_TEMPS if temperatures is None else temperatures),
    }
    document.update(extra)
    return document


def make_settings(**overrides: Any) -> Settings:
    return replace(BASE_SETTINGS, **overrides)


def build_engine(store: Optional[MockTelemetryStore] = None, **overrides: Any) -> SyncEngine:
    return SyncEngine(store=store or MockTelemetryStore(), settings=make_settings(**overrides))


class RecordingSubscriber(Subscriber):
    """Subscriber that keeps every delivered message in memory."""

    def __init__(self, subscriber_id: Optional[str] = None, closed: bool = False) -> None:
        super().__init__(subscriber_id)
        self.messages: List[Dict[str, Any]] = []
        self.closed = closed

    async def deliver(self, message: Dict[str, Any]) -> None:
        if self.closed:
            raise ChannelClosedError("closed")
        self.messages.append(message)

    def events(self) -> List[str]:
        return [message["event"] for message in self.messages]

    def payloads(self, event: str) -> List[Any]:
        return [message["data"] for message in self.messages if message["event"] == event]

    def clear(self) -> None:
        self.messages.clear()


class FlakyStore(MockTelemetryStore):
    """Store whose queries fail for chosen sensors or collections."""

    def __init__(self) -> None:
        super().__init__()
        self.failing_sensors: Set[str] = set()
        self.failing_collections: Set[Collection] = set()
        self.reachable = True

    def find(self, collection, sensor_id=None, since=None, limit=None):
        if collection in self.failing_collections or sensor_id in self.failing_sensors:
            raise StoreUnavailableError(f"{collection.value} query timed out")
        return super().find(collection, sensor_id=sensor_id, since=since, limit=limit)

    def distinct_sensor_ids(self, collection):
        if collection in self.failing_collections:
            raise StoreUnavailableError(f"{collection.value} distinct timed out")
        return super().distinct_sensor_ids(collection)

    def count(self, collection, since=None):
        if collection in self.failing_collections:
            raise StoreUnavailableError(f"{collection.value} count timed out")
        return super().count(collection, since=since)

    def ping(self) -> bool:
        return self.reachable
