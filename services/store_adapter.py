"""Read-only, async query surface over the telemetry store."""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set, TypeVar

from app.schemas import Alert, PersonalityBias, Reading, SettingChange
from datastore.mock_telemetry import MockTelemetryStore, StoreUnavailableError
from models.records import (
    Collection,
    RawDocument,
    document_sensor_id,
    document_timestamp,
    first_present,
)
from services import abnormality
from services.content import personality_content, setting_content

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CHANNEL_COUNT = 16


def display_date(timestamp: datetime) -> str:
    return f"{timestamp.year}/{timestamp.month}/{timestamp.day}"


def display_time(timestamp: datetime) -> str:
    return timestamp.strftime("%H:%M:%S")


def _coerce_channel(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        parsed = float(value)
    elif isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return parsed if math.isfinite(parsed) else None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


class StoreAdapter:
    """Normalizes raw store documents into viewer payload models.

    Every query runs the blocking store call in a worker thread. Failures of
    the store surface as :class:`StoreUnavailableError`; malformed documents
    are skipped with a warning and never fail the query.
    """

    def __init__(self, store: MockTelemetryStore, channel_count: int = DEFAULT_CHANNEL_COUNT) -> None:
        self.store = store
        self.channel_count = channel_count
        self._history_normalizers: Dict[Collection, Callable[[RawDocument, str, datetime], Any]] = {
            Collection.alerts: self._normalize_alert,
            Collection.settings: self._normalize_setting,
            Collection.personality: self._normalize_personality,
        }

    def normalize_reading(self, document: RawDocument) -> Optional[Reading]:
        """Normalize one raw reading document, or ``None`` when malformed."""
        sensor_id = document_sensor_id(document)
        if sensor_id is None:
            self._skip(Collection.readings, "missing sensor id")
            return None
        return self._normalize_reading(document, sensor_id)

    def normalize_history(self, collection: Collection, document: RawDocument) -> Optional[Any]:
        """Normalize one alert, setting or personality document."""
        items = self._normalize_all([document], collection, self._history_normalizers[collection])
        return items[0] if items else None

    async def list_sensor_ids(self) -> Set[str]:
        return await self._query(self.store.distinct_sensor_ids, Collection.readings)

    async def latest_readings(self, sensor_id: str, limit: int) -> list[Reading]:
        documents = await self._query(
            self.store.find, Collection.readings, sensor_id=sensor_id, limit=limit
        )
        readings: list[Reading] = []
        for document in documents:
            reading = self._normalize_reading(document, sensor_id)
            if reading is not None:
                readings.append(reading)
        return readings

    async def recent_alerts(self, limit: int) -> list[Alert]:
        documents = await self._query(self.store.find, Collection.alerts, limit=limit)
        return self._normalize_all(documents, Collection.alerts, self._normalize_alert)

    async def recent_setting_changes(self, limit: int) -> list[SettingChange]:
        documents = await self._query(self.store.find, Collection.settings, limit=limit)
        return self._normalize_all(documents, Collection.settings, self._normalize_setting)

    async def recent_personality_changes(self, limit: int) -> list[PersonalityBias]:
        documents = await self._query(self.store.find, Collection.personality, limit=limit)
        return self._normalize_all(documents, Collection.personality, self._normalize_personality)

    async def count_all(self, collection: Collection) -> int:
        return await self._query(self.store.count, collection)

    async def count_since(self, collection: Collection, instant: datetime) -> int:
        return await self._query(self.store.count, collection, since=instant)

    async def size_estimate(self) -> int:
        return await self._query(self.store.data_size)

    async def ping(self) -> bool:
        try:
            return bool(await self._query(self.store.ping))
        except StoreUnavailableError:
            return False

    async def _query(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except StoreUnavailableError:
            raise
        except (OSError, TimeoutError) as exc:
            raise StoreUnavailableError(str(exc) or type(exc).__name__) from exc

    def _normalize_all(
        self,
        documents: list[RawDocument],
        collection: Collection,
        normalize: Callable[[RawDocument, str, datetime], T],
    ) -> list[T]:
        items: list[T] = []
        for document in documents:
            sensor_id = document_sensor_id(document)
            if sensor_id is None:
                self._skip(collection, "missing sensor id")
                continue
            timestamp = document_timestamp(document)
            if timestamp is None:
                self._skip(collection, "missing or invalid timestamp", sensor_id)
                continue
            items.append(normalize(document, sensor_id, timestamp))
        return items

    def _normalize_reading(self, document: RawDocument, sensor_id: str) -> Optional[Reading]:
        timestamp = document_timestamp(document)
        if timestamp is None:
            self._skip(Collection.readings, "missing or invalid timestamp", sensor_id)
            return None

        raw_channels = first_present(document, ("temperature_data", "temperatures")) or []
        if not isinstance(raw_channels, list):
            self._skip(Collection.readings, "temperatures is not a list", sensor_id)
            return None
        temperatures = [_coerce_channel(value) for value in raw_channels]
        if len(temperatures) < self.channel_count:
            temperatures.extend([None] * (self.channel_count - len(temperatures)))

        return Reading(
            sensor_id=sensor_id,
            timestamp=timestamp,
            temperatures=temperatures,
            average_temperature=abnormality.average(temperatures),
            is_abnormal=abnormality.evaluate(temperatures),
            date=display_date(timestamp),
            time=display_time(timestamp),
        )

    @staticmethod
    def _normalize_alert(document: RawDocument, sensor_id: str, timestamp: datetime) -> Alert:
        reason = first_present(document, ("alert_reason", "alertReason", "event", "message"))
        event_type = first_present(document, ("eventType", "status"))
        return Alert(
            sensor_id=sensor_id,
            timestamp=timestamp,
            reason=str(reason) if reason else "Unknown alert",
            event_type=str(event_type) if event_type else "UNKNOWN",
            date=display_date(timestamp),
            time=display_time(timestamp),
        )

    @staticmethod
    def _normalize_setting(document: RawDocument, sensor_id: str, timestamp: datetime) -> SettingChange:
        return SettingChange(
            sensor_id=sensor_id,
            timestamp=timestamp,
            content=setting_content(document),
            change_type=_optional_str(document.get("changeType")),
            value=document.get("value"),
            date=display_date(timestamp),
            time=display_time(timestamp),
        )

    @staticmethod
    def _normalize_personality(
        document: RawDocument, sensor_id: str, timestamp: datetime
    ) -> PersonalityBias:
        return PersonalityBias(
            sensor_id=sensor_id,
            timestamp=timestamp,
            content=personality_content(document),
            bias_type=_optional_str(document.get("biasType")),
            bias_value=document.get("biasValue"),
            date=display_date(timestamp),
            time=display_time(timestamp),
        )

    @staticmethod
    def _skip(collection: Collection, reason: str, sensor_id: Optional[str] = None) -> None:
        logger.warning(
            "Skipping malformed %s record",
            collection.value,
            extra={"stream": collection.value, "reason": reason, "sensor_id": sensor_id},
        )
