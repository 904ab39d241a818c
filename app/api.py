"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from app.schemas import (
    Alert,
    LatestReading,
    PersonalityBias,
    Reading,
    SettingChange,
    StatsBundle,
)
from datastore.mock_telemetry import StoreUnavailableError
from services.engine import SyncEngine, build_default_engine

router = APIRouter()


def get_engine() -> SyncEngine:
    return build_default_engine()


def _store_unavailable(exc: StoreUnavailableError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Telemetry store unavailable: {exc}",
    )


@router.get(
    "/api/sensor-data/latest",
    response_model=List[LatestReading],
    summary="Newest reading of every sensor with its activity flag.",
)
async def get_latest_data(engine: SyncEngine = Depends(get_engine)) -> List[LatestReading]:
    cutoff = datetime.now(timezone.utc).timestamp() - engine.settings.active_window_seconds
    latest: List[LatestReading] = []
    try:
        for sensor_id in sorted(await engine.adapter.list_sensor_ids()):
            readings = await engine.adapter.latest_readings(sensor_id, 1)
            if not readings:
                continue
            newest = readings[0]
            latest.append(
                LatestReading(
                    **newest.model_dump(),
                    is_active=newest.timestamp.timestamp() > cutoff,
                )
            )
    except StoreUnavailableError as exc:
        raise _store_unavailable(exc) from exc
    return latest


@router.get(
    "/api/sensor-data/{sensor_id}/latest",
    response_model=List[Reading],
    summary="Latest readings of one sensor, newest first.",
)
async def get_latest_data_by_sensor(
    sensor_id: str,
    engine: SyncEngine = Depends(get_engine),
) -> List[Reading]:
    try:
        readings = await engine.adapter.latest_readings(
            sensor_id, engine.settings.reading_batch_limit
        )
    except StoreUnavailableError as exc:
        raise _store_unavailable(exc) from exc
    if not readings:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No readings found for sensor {sensor_id!r}.",
        )
    return readings


@router.get("/api/alerts", response_model=List[Alert], summary="Most recent alerts.")
async def get_alerts(engine: SyncEngine = Depends(get_engine)) -> List[Alert]:
    try:
        return await engine.adapter.recent_alerts(engine.settings.history_delta_limit)
    except StoreUnavailableError as exc:
        raise _store_unavailable(exc) from exc


@router.get(
    "/api/settings",
    response_model=List[SettingChange],
    summary="Most recent setting changes.",
)
async def get_settings_history(engine: SyncEngine = Depends(get_engine)) -> List[SettingChange]:
    try:
        return await engine.adapter.recent_setting_changes(engine.settings.history_delta_limit)
    except StoreUnavailableError as exc:
        raise _store_unavailable(exc) from exc


@router.get(
    "/api/personality",
    response_model=List[PersonalityBias],
    summary="Most recent personality and bias changes.",
)
async def get_personality(engine: SyncEngine = Depends(get_engine)) -> List[PersonalityBias]:
    try:
        return await engine.adapter.recent_personality_changes(
            engine.settings.history_delta_limit
        )
    except StoreUnavailableError as exc:
        raise _store_unavailable(exc) from exc


@router.get(
    "/api/stats",
    response_model=StatsBundle,
    summary="Server, performance and data statistics.",
)
async def get_stats(engine: SyncEngine = Depends(get_engine)) -> StatsBundle:
    return await engine.stats.collect()


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
