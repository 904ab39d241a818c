from __future__ import annotations

from typing import Any, Dict, List

import pytest
import typer
from typer.testing import CliRunner

from cli.app import app
from cli.config import load_config


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.requested_streams: List[str] = []
        self.closed = False
        self.latest: List[Dict[str, Any]] = [
            {
                "sensorId": "S1",
                "date": "2024/1/1",
                "time": "12:00:00",
                "averageTemperature": 22.84,
                "isAbnormal": False,
                "isActive": True,
            },
            {
                "sensorId": "S2",
                "date": "2024/1/1",
                "time": "11:00:00",
                "averageTemperature": 31.0,
                "isAbnormal": True,
                "isActive": False,
            },
        ]

    def latest_per_sensor(self) -> List[Dict[str, Any]]:
        return self.latest

    def sensor_readings(self, sensor_id: str) -> List[Dict[str, Any]]:
        if sensor_id == "missing":
            raise typer.BadParameter(f"No readings found for sensor {sensor_id}.")
        return [
            {
                "sensorId": sensor_id,
                "date": "2024/1/1",
                "time": "12:00:00",
                "temperatures": [22.5, None, 23.0],
                "isAbnormal": False,
            }
        ]

    def history(self, stream: str) -> List[Dict[str, Any]]:
        self.requested_streams.append(stream)
        if stream == "alerts":
            return [
                {
                    "sensorId": "S1",
                    "date": "2024/1/1",
                    "time": "12:00:00",
                    "reason": "Temperature above range",
                    "eventType": "HIGH",
                }
            ]
        return []

    def stats(self) -> Dict[str, Any]:
        return {
            "server": {"totalSensors": 2, "activeSensors": 1, "lastUpdateTime": None, "storeConnected": True},
            "performance": {"uptime": 12.5, "cpuUsage": 1.0, "memoryUsage": 1024, "clientCount": 3},
            "data": {
                "totalDataPoints": 10,
                "todayDataPoints": 4,
                "totalAlerts": 1,
                "todayAlerts": 0,
                "storeSize": 2048,
            },
        }

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub(monkeypatch) -> StubClient:
    client = StubClient(config=None)

    def factory(config):
        client.config = config
        return client

    monkeypatch.setattr("cli.app.ApiClient", factory)
    return client


def test_sensors_command(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["sensors"])

    assert result.exit_code == 0
    assert "Sensors" in result.stdout
    assert "S1: 2024/1/1 12:00:00 avg=22.8" in result.stdout
    assert "ABNORMAL" in result.stdout
    assert "(inactive)" in result.stdout
    assert stub.closed is True


def test_sensors_command_with_no_data(runner: CliRunner, stub: StubClient) -> None:
    stub.latest = []

    result = runner.invoke(app, ["sensors"])

    assert result.exit_code == 0
    assert "No sensor data available." in result.stdout


def test_readings_command(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["readings", "S1"])

    assert result.exit_code == 0
    assert "Readings for S1" in result.stdout
    assert "22.5 - 23.0" in result.stdout


def test_readings_for_unknown_sensor_fails(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["readings", "missing"])

    assert result.exit_code != 0


def test_history_defaults_to_alerts(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["history"])

    assert result.exit_code == 0
    assert "[HIGH] Temperature above range" in result.stdout
    assert stub.requested_streams == ["alerts"]


def test_history_with_empty_stream(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["history", "settings"])

    assert result.exit_code == 0
    assert "No settings recorded." in result.stdout


def test_stats_command(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["stats"])

    assert result.exit_code == 0
    for heading in ("Server", "Performance", "Data"):
        assert heading in result.stdout
    assert "clientCount: 3" in result.stdout
    assert "storeSize: 2048" in result.stdout


def test_base_url_option_reaches_client(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["--base-url", "http://example.test:9000/", "--timeout", "2", "stats"])

    assert result.exit_code == 0
    assert stub.config.base_url == "http://example.test:9000"
    assert stub.config.request_timeout == 2.0


def test_load_config_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://sync.internal/")
    monkeypatch.setenv("CLI_REQUEST_TIMEOUT", "not-a-number")

    config = load_config()

    assert config.base_url == "http://sync.internal"
    assert config.request_timeout == 10.0
