from __future__ import annotations

from typing import Any, Dict, List

import httpx
import typer

from cli.config import CLIConfig

HISTORY_STREAMS = ("alerts", "settings", "personality")


class ApiClient:
    """Minimal HTTP client for the telemetry sync service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.request_timeout)

    def close(self) -> None:
        self._client.close()

    def latest_per_sensor(self) -> List[Dict[str, Any]]:
        return self._get_json("/api/sensor-data/latest")

    def sensor_readings(self, sensor_id: str) -> List[Dict[str, Any]]:
        return self._get_json(
            f"/api/sensor-data/{sensor_id}/latest",
            not_found=f"No readings found for sensor {sensor_id}.",
        )

    def history(self, stream: str) -> List[Dict[str, Any]]:
        if stream not in HISTORY_STREAMS:
            raise typer.BadParameter(
                f"Unknown history stream {stream!r}; choose from {', '.join(HISTORY_STREAMS)}."
            )
        return self._get_json(f"/api/{stream}")

    def stats(self) -> Dict[str, Any]:
        return self._get_json("/api/stats")

    def _get_json(self, path: str, not_found: str | None = None) -> Any:
        try:
            response = self._client.get(path)
            if response.status_code == 404 and not_found:
                raise typer.BadParameter(not_found)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(
                f"Could not reach {self._config.base_url}: {exc}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1) from exc
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
