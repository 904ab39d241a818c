from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import typer
import uvicorn

from cli.client import HISTORY_STREAMS, ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_history, render_latest, render_readings, render_stats


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for running and inspecting the telemetry sync service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each HTTP request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, request_timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("sensors")
def sensors_command(ctx: typer.Context) -> None:
    """Show the newest reading of every sensor."""
    state = _get_state(ctx)
    render_latest(state.client.latest_per_sensor())


@app.command("readings")
def readings_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor identifier."),
) -> None:
    """Show the latest readings of one sensor."""
    state = _get_state(ctx)
    render_readings(sensor_id, state.client.sensor_readings(sensor_id))


@app.command("history")
def history_command(
    ctx: typer.Context,
    stream: str = typer.Argument(
        "alerts", help=f"One of: {', '.join(HISTORY_STREAMS)}."
    ),
) -> None:
    """Show recent alerts, setting changes or personality changes."""
    state = _get_state(ctx)
    render_history(stream, state.client.history(stream))


@app.command("stats")
def stats_command(ctx: typer.Context) -> None:
    """Show server, performance and data statistics."""
    state = _get_state(ctx)
    render_stats(state.client.stats())


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind."),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on."),
) -> None:
    """Run the sync service under uvicorn."""
    uvicorn.run("app.main:app", host=host, port=port, log_config=None)
