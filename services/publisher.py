"""Immediate pushes of freshly ingested records to connected viewers."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List

from app.schemas import Alert, SensorBatch
from datastore.mock_telemetry import StoreUnavailableError
from models.records import TIMESTAMP_FIELDS, Collection, RawDocument, first_present
from services.broadcaster import Broadcaster, StreamKind
from services.store_adapter import StoreAdapter, display_date, display_time
from services.watermarks import WatermarkTracker

logger = logging.getLogger(__name__)

ABNORMAL_ALERT_REASON = "Temperature abnormality detected"
ABNORMAL_ALERT_TYPE = "TEMPERATURE_ABNORMAL"


def _merge_newest(item: Any, recent: List[Any], limit: int) -> List[Any]:
    if item in recent:
        return recent
    merged = sorted([item, *recent], key=lambda entry: entry.timestamp, reverse=True)
    return merged[:limit]


class LivePublisher:
    """Pushes a record to viewers as soon as ingestion hands it over.

    Pushes take ``sync_lock`` like poll ticks and snapshots do. A pushed
    reading advances its sensor's watermark, so the next tick does not send it
    again; a reading at or behind the watermark is not pushed at all. Each push
    carries the same payload shape as the matching poll delta: the stored
    batch with the pushed record merged in.
    """

    def __init__(
        self,
        adapter: StoreAdapter,
        broadcaster: Broadcaster,
        watermarks: WatermarkTracker,
        sync_lock: asyncio.Lock,
        reading_limit: int = 100,
        history_limit: int = 10,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.adapter = adapter
        self.broadcaster = broadcaster
        self.watermarks = watermarks
        self.sync_lock = sync_lock
        self.reading_limit = reading_limit
        self.history_limit = history_limit
        self.clock = clock

    async def publish_reading(self, document: RawDocument) -> int:
        """Push one reading; abnormal readings also raise an alert push."""
        reading = self.adapter.normalize_reading(self._stamped(document))
        if reading is None:
            return 0

        async with self.sync_lock:
            if not self.watermarks.advance(reading.sensor_id, reading.timestamp):
                logger.debug(
                    "Reading already delivered, not pushing",
                    extra={"sensor_id": reading.sensor_id},
                )
                return 0
            try:
                stored = await self.adapter.latest_readings(reading.sensor_id, self.reading_limit)
            except StoreUnavailableError as exc:
                logger.warning(
                    "Could not fetch readings for push",
                    extra={"sensor_id": reading.sensor_id, "reason": str(exc)},
                )
                stored = []
            batch = SensorBatch(
                sensor_id=reading.sensor_id,
                readings=_merge_newest(reading, stored, self.reading_limit),
            )
            delivered = await self.broadcaster.broadcast_sensor_delta(batch)

        logger.info(
            "Published sensor reading",
            extra={
                "sensor_id": reading.sensor_id,
                "reading_count": len(batch.readings),
                "subscriber_count": delivered,
            },
        )
        if reading.is_abnormal:
            alert = Alert(
                sensor_id=reading.sensor_id,
                timestamp=reading.timestamp,
                reason=ABNORMAL_ALERT_REASON,
                event_type=ABNORMAL_ALERT_TYPE,
                date=display_date(reading.timestamp),
                time=display_time(reading.timestamp),
            )
            await self._push_history(StreamKind.alerts_delta, alert, self.adapter.recent_alerts)
        return delivered

    async def publish_alert(self, document: RawDocument) -> int:
        return await self._publish_document(
            Collection.alerts, StreamKind.alerts_delta, document, self.adapter.recent_alerts
        )

    async def publish_setting_change(self, document: RawDocument) -> int:
        return await self._publish_document(
            Collection.settings,
            StreamKind.settings_delta,
            document,
            self.adapter.recent_setting_changes,
        )

    async def publish_personality_update(self, document: RawDocument) -> int:
        return await self._publish_document(
            Collection.personality,
            StreamKind.personality_delta,
            document,
            self.adapter.recent_personality_changes,
        )

    async def _publish_document(
        self,
        collection: Collection,
        kind: StreamKind,
        document: RawDocument,
        fetch: Callable[[int], Awaitable[list]],
    ) -> int:
        item = self.adapter.normalize_history(collection, self._stamped(document))
        if item is None:
            return 0
        return await self._push_history(kind, item, fetch)

    async def _push_history(
        self,
        kind: StreamKind,
        item: Any,
        fetch: Callable[[int], Awaitable[list]],
    ) -> int:
        async with self.sync_lock:
            try:
                recent = await fetch(self.history_limit)
            except StoreUnavailableError as exc:
                logger.warning(
                    "Could not fetch history for push",
                    extra={"stream": kind.value, "reason": str(exc)},
                )
                recent = []
            delivered = await self.broadcaster.broadcast(
                kind, _merge_newest(item, recent, self.history_limit)
            )

        logger.info(
            "Published %s update",
            kind.value,
            extra={"sensor_id": item.sensor_id, "subscriber_count": delivered},
        )
        return delivered

    def _stamped(self, document: RawDocument) -> RawDocument:
        # Ingestion may hand over a record before the store assigned its time.
        if first_present(document, TIMESTAMP_FIELDS) is not None:
            return document
        return {**document, "timestamp": self.clock()}
