"""Store-level record definitions shared across services."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

RawDocument = Dict[str, Any]

SENSOR_ID_FIELDS = ("sensor_id", "sensorId")
TIMESTAMP_FIELDS = ("created_at", "timestamp")


class Collection(str, Enum):
    """Logical collections the telemetry store holds."""

    readings = "temperature_readings"
    alerts = "alerts_log"
    settings = "settings_history"
    personality = "personality_history"


def first_present(document: RawDocument, fields: tuple[str, ...]) -> Any:
    """Return the first field value that is present and not ``None``."""
    for name in fields:
        value = document.get(name)
        if value is not None:
            return value
    return None


def parse_timestamp(value: Any) -> datetime:
    """Coerce a stored timestamp into an aware UTC ``datetime``."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            raise ValueError("Timestamp is empty.")
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError as exc:
            raise ValueError("Invalid timestamp format") from exc
    else:
        raise ValueError(f"Unsupported timestamp value {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def document_timestamp(document: RawDocument) -> Optional[datetime]:
    """Ordering timestamp of a raw document, or ``None`` when unusable."""
    raw = first_present(document, TIMESTAMP_FIELDS)
    if raw is None:
        return None
    try:
        return parse_timestamp(raw)
    except ValueError:
        return None


def document_sensor_id(document: RawDocument) -> Optional[str]:
    raw = first_present(document, SENSOR_ID_FIELDS)
    if raw is None:
        return None
    candidate = str(raw).strip()
    return candidate or None
