"""WebSocket channel that keeps a viewer synchronized."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from services.broadcaster import ChannelClosedError, Subscriber
from services.engine import SyncEngine, build_default_engine

logger = logging.getLogger(__name__)

REQUEST_FULL_SYNC = "request-full-sync"
REQUEST_SERVER_STATS = "request-server-stats"

router = APIRouter()


def get_engine() -> SyncEngine:
    return build_default_engine()


class WebSocketSubscriber(Subscriber):
    def __init__(self, websocket: WebSocket) -> None:
        super().__init__()
        self.websocket = websocket

    async def deliver(self, message: Dict[str, Any]) -> None:
        if (
            self.websocket.client_state != WebSocketState.CONNECTED
            or self.websocket.application_state != WebSocketState.CONNECTED
        ):
            raise ChannelClosedError(f"WebSocket for {self.id} is closed.")
        try:
            await self.websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as exc:
            raise ChannelClosedError(str(exc)) from exc


def parse_client_event(raw: str) -> Optional[str]:
    """Extract the event name from ``{"event": ...}`` or a bare event string."""
    candidate = raw.strip()
    if not candidate:
        return None
    try:
        message = json.loads(candidate)
    except ValueError:
        return candidate
    if isinstance(message, dict):
        event = message.get("event")
        return event if isinstance(event, str) else None
    if isinstance(message, str):
        return message
    return None


@router.websocket("/ws")
async def sync_channel(
    websocket: WebSocket,
    engine: SyncEngine = Depends(get_engine),
) -> None:
    await websocket.accept()
    subscriber = WebSocketSubscriber(websocket)
    registry = engine.registry
    try:
        await registry.on_connect(subscriber)
        while True:
            event = parse_client_event(await websocket.receive_text())
            if event == REQUEST_FULL_SYNC:
                await registry.on_request_full_sync(subscriber)
            elif event == REQUEST_SERVER_STATS:
                await registry.on_request_server_stats(subscriber)
            else:
                logger.warning(
                    "Ignoring unknown client event",
                    extra={"subscriber_id": subscriber.id, "event": event},
                )
    except WebSocketDisconnect:
        pass
    finally:
        await registry.on_disconnect(subscriber)
