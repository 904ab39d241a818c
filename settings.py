from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_STORE_PATH_ENV = "TELEMETRY_STORE_PATH"
_POLL_INTERVAL_ENV = "POLL_INTERVAL_MS"
_STATS_INTERVAL_ENV = "STATS_INTERVAL_MS"
_SLOW_TICK_ENV = "SLOW_TICK_WARNING_MS"
_READING_LIMIT_ENV = "READING_BATCH_LIMIT"
_SNAPSHOT_LIMIT_ENV = "HISTORY_SNAPSHOT_LIMIT"
_DELTA_LIMIT_ENV = "HISTORY_DELTA_LIMIT"
_ACTIVE_WINDOW_ENV = "ACTIVE_WINDOW_SECONDS"
_CHANNEL_COUNT_ENV = "SENSOR_CHANNEL_COUNT"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    store_path: Optional[str]
    poll_interval_ms: int
    stats_interval_ms: int
    slow_tick_warning_ms: int
    reading_batch_limit: int
    history_snapshot_limit: int
    history_delta_limit: int
    active_window_seconds: int
    sensor_channel_count: int
    log_level: str

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def stats_interval(self) -> float:
        return self.stats_interval_ms / 1000


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/telemetry.json"),
        poll_interval_ms=_read_positive_int(_POLL_INTERVAL_ENV, 1000),
        stats_interval_ms=_read_positive_int(_STATS_INTERVAL_ENV, 5000),
        slow_tick_warning_ms=_read_positive_int(_SLOW_TICK_ENV, 500),
        reading_batch_limit=_read_positive_int(_READING_LIMIT_ENV, 100),
        history_snapshot_limit=_read_positive_int(_SNAPSHOT_LIMIT_ENV, 100),
        history_delta_limit=_read_positive_int(_DELTA_LIMIT_ENV, 10),
        active_window_seconds=_read_positive_int(_ACTIVE_WINDOW_ENV, 300),
        sensor_channel_count=_read_positive_int(_CHANNEL_COUNT_ENV, 16),
        log_level=_read_log_level("INFO"),
    )
