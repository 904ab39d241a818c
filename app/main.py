from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from app.ws import router as ws_router
from logging_config import configure_logging
from services.engine import build_default_engine


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    engine = build_default_engine()
    await engine.check_store()
    try:
        yield
    finally:
        await engine.shutdown()
        build_default_engine.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Telemetry Sync Service",
        description="Keeps live viewers synchronized with sensor telemetry over WebSocket.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    app.include_router(ws_router)
    return app

app = create_app()
