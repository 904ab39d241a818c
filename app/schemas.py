"""Pydantic schemas for payloads sent to viewers and HTTP clients."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ViewerModel(BaseModel):
    """Base for payloads; serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Reading(ViewerModel):
    """One temperature sample across all sensor channels."""

    sensor_id: str
    timestamp: datetime
    temperatures: List[Optional[float]] = Field(default_factory=list)
    average_temperature: Optional[float] = None
    is_abnormal: bool = False
    date: str
    time: str


class LatestReading(Reading):
    is_active: bool = False


class SensorBatch(ViewerModel):
    """Newest-first readings of one sensor, as sent on join and on change."""

    sensor_id: str
    readings: List[Reading] = Field(default_factory=list)


class Alert(ViewerModel):
    sensor_id: str
    timestamp: datetime
    reason: str
    event_type: str = "UNKNOWN"
    date: str
    time: str


class SettingChange(ViewerModel):
    sensor_id: str
    timestamp: datetime
    content: str = Field(..., min_length=1)
    change_type: Optional[str] = None
    value: Any = None
    date: str
    time: str


class PersonalityBias(ViewerModel):
    sensor_id: str
    timestamp: datetime
    content: str = Field(..., min_length=1)
    bias_type: Optional[str] = None
    bias_value: Any = None
    date: str
    time: str


class Heartbeat(ViewerModel):
    timestamp: datetime


class ServerStats(ViewerModel):
    total_sensors: int = Field(default=0, ge=0)
    active_sensors: int = Field(default=0, ge=0)
    last_update_time: Optional[datetime] = None
    store_connected: bool = False


class PerformanceStats(ViewerModel):
    uptime: float = Field(default=0.0, ge=0, description="Process uptime in seconds.")
    cpu_usage: float = Field(default=0.0, ge=0, description="CPU utilization percentage.")
    memory_usage: int = Field(default=0, ge=0, description="Resident set size in bytes.")
    client_count: int = Field(default=0, ge=0)


class DataStats(ViewerModel):
    total_data_points: int = Field(default=0, ge=0)
    today_data_points: int = Field(default=0, ge=0)
    total_alerts: int = Field(default=0, ge=0)
    today_alerts: int = Field(default=0, ge=0)
    store_size: int = Field(default=0, ge=0, description="Estimated store size in bytes.")


class StatsBundle(ViewerModel):
    server: ServerStats
    performance: PerformanceStats
    data: DataStats
