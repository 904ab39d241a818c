from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _format_temperature(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.1f}"


def _abnormal_marker(reading: Dict[str, Any]) -> str:
    if reading.get("isAbnormal"):
        return typer.style("ABNORMAL", fg=typer.colors.RED, bold=True)
    return typer.style("normal", fg=typer.colors.GREEN)


def render_latest(readings: List[Dict[str, Any]]) -> None:
    echo_heading("Sensors")
    if not readings:
        typer.echo("No sensor data available.")
        return
    for reading in readings:
        activity = "active" if reading.get("isActive") else "inactive"
        typer.echo(
            f"  - {reading.get('sensorId')}: {reading.get('date')} {reading.get('time')} "
            f"avg={_format_temperature(reading.get('averageTemperature'))} "
            f"{_abnormal_marker(reading)} ({activity})"
        )


def render_readings(sensor_id: str, readings: List[Dict[str, Any]]) -> None:
    echo_heading(f"Readings for {sensor_id}")
    for reading in readings:
        channels = " ".join(_format_temperature(value) for value in reading.get("temperatures") or [])
        typer.echo(
            f"  {reading.get('date')} {reading.get('time')} {_abnormal_marker(reading)} | {channels}"
        )


def render_history(stream: str, items: List[Dict[str, Any]]) -> None:
    echo_heading(f"Recent {stream}")
    if not items:
        typer.echo(f"No {stream} recorded.")
        return
    for item in items:
        if stream == "alerts":
            summary = f"[{item.get('eventType') or '-'}] {item.get('reason')}"
        else:
            summary = item.get("content")
        typer.echo(f"  - {item.get('date')} {item.get('time')} {item.get('sensorId')}: {summary}")


def render_stats(payload: Dict[str, Any]) -> None:
    server = payload.get("server") or {}
    performance = payload.get("performance") or {}
    data = payload.get("data") or {}

    echo_heading("Server")
    echo_key_values(
        [
            ("totalSensors", server.get("totalSensors")),
            ("activeSensors", server.get("activeSensors")),
            ("lastUpdateTime", server.get("lastUpdateTime")),
            ("storeConnected", server.get("storeConnected")),
        ]
    )
    typer.echo()
    echo_heading("Performance")
    echo_key_values(
        [
            ("uptime", performance.get("uptime")),
            ("cpuUsage", performance.get("cpuUsage")),
            ("memoryUsage", performance.get("memoryUsage")),
            ("clientCount", performance.get("clientCount")),
        ]
    )
    typer.echo()
    echo_heading("Data")
    echo_key_values(
        [
            ("totalDataPoints", data.get("totalDataPoints")),
            ("todayDataPoints", data.get("todayDataPoints")),
            ("totalAlerts", data.get("totalAlerts")),
            ("todayAlerts", data.get("todayAlerts")),
            ("storeSize", data.get("storeSize")),
        ]
    )
