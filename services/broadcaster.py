"""Fan-out of snapshots and incremental updates to connected viewers."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional
from uuid import uuid4

from pydantic import BaseModel

from app.schemas import SensorBatch

logger = logging.getLogger(__name__)


class StreamKind(str, Enum):
    """Event names understood by viewer clients."""

    sensor_full = "sensor-full"
    sensor_delta = "sensor-delta"
    alerts_full = "alerts-full"
    alerts_delta = "alerts-delta"
    settings_full = "settings-full"
    settings_delta = "settings-delta"
    personality_full = "personality-full"
    personality_delta = "personality-delta"
    heartbeat = "heartbeat"
    server_stats = "server-stats"
    performance_stats = "performance-stats"
    data_stats = "data-stats"


class ChannelClosedError(ConnectionError):
    """The subscriber's channel can no longer accept messages."""


class Subscriber:
    """One connected viewer.

    Subclasses implement :meth:`deliver` for their transport. ``snapshot_marks``
    records, per sensor, the newest reading timestamp this viewer already
    holds so repeated deltas can be suppressed.
    """

    def __init__(self, subscriber_id: Optional[str] = None) -> None:
        self.id = subscriber_id or uuid4().hex[:12]
        self.snapshot_marks: Dict[str, datetime] = {}

    async def deliver(self, message: Dict[str, Any]) -> None:
        raise NotImplementedError

    def has_seen(self, sensor_id: str, timestamp: datetime) -> bool:
        mark = self.snapshot_marks.get(sensor_id)
        return mark is not None and timestamp <= mark

    def mark_seen(self, sensor_id: str, timestamp: datetime) -> None:
        mark = self.snapshot_marks.get(sensor_id)
        if mark is None or timestamp > mark:
            self.snapshot_marks[sensor_id] = timestamp

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"


def encode(kind: StreamKind, payload: Any) -> Dict[str, Any]:
    return {"event": kind.value, "data": _to_wire(payload)}


def _to_wire(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True)
    if isinstance(payload, (list, tuple)):
        return [_to_wire(item) for item in payload]
    return payload


class Broadcaster:
    """Best-effort delivery; no acknowledgement and no retry.

    A send that fails because the channel closed is ignored here. Removing the
    subscriber is left to the disconnect handler.
    """

    def __init__(self, members: Callable[[], Iterable[Subscriber]]) -> None:
        self._members = members

    async def send_full(self, subscriber: Subscriber, kind: StreamKind, payload: Any) -> bool:
        if isinstance(payload, SensorBatch) and payload.readings:
            subscriber.mark_seen(payload.sensor_id, payload.readings[0].timestamp)
        return await self._send(subscriber, encode(kind, payload), kind)

    async def broadcast(self, kind: StreamKind, payload: Any) -> int:
        message = encode(kind, payload)
        delivered = 0
        for subscriber in list(self._members()):
            if await self._send(subscriber, message, kind):
                delivered += 1
        return delivered

    async def broadcast_sensor_delta(self, batch: SensorBatch) -> int:
        """Broadcast a sensor batch, skipping viewers that already hold it."""
        if not batch.readings:
            return 0
        newest = batch.readings[0].timestamp
        message = encode(StreamKind.sensor_delta, batch)
        delivered = 0
        for subscriber in list(self._members()):
            if subscriber.has_seen(batch.sensor_id, newest):
                continue
            subscriber.mark_seen(batch.sensor_id, newest)
            if await self._send(subscriber, message, StreamKind.sensor_delta):
                delivered += 1
        return delivered

    @staticmethod
    async def _send(subscriber: Subscriber, message: Dict[str, Any], kind: StreamKind) -> bool:
        try:
            await subscriber.deliver(message)
        except ChannelClosedError:
            logger.debug(
                "Dropping message for closed channel",
                extra={"subscriber_id": subscriber.id, "event": kind.value},
            )
            return False
        return True
