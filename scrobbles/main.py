"""scrobbles API — FastAPI application entry point.

Run locally:
    uvicorn scrobbles.main:app --reload --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from scrobbles.config import Settings, get_settings
from scrobbles.lastfm.client import LastfmHistorySource
from scrobbles.middleware.access_log import AccessLogMiddleware
from scrobbles.routers import status, users
from scrobbles.storage.history import HistoryStore
from scrobbles.storage.kv import KeyValueStore, StorePersistenceError
from scrobbles.sync.scanner import ScanOptions
from scrobbles.sync.scheduler import SyncScheduler

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("scrobbles")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the store and run the sync loop for the app's lifetime."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting %s v%s [%s], store at %s",
        settings.app_name,
        settings.app_version,
        settings.environment,
        settings.db_path,
    )

    store = HistoryStore(KeyValueStore(settings.db_path))
    await store.open()
    app.state.store = store

    if not settings.sync_enabled:
        logger.info("Sync loop disabled; serving read API only")
        yield
        logger.info("scrobbles shut down")
        return

    if not settings.lastfm_api_key:
        raise RuntimeError("LASTFM_API_KEY is required when sync is enabled")

    async with httpx.AsyncClient(timeout=settings.request_timeout_seconds) as client:
        source = LastfmHistorySource(
            api_key=settings.lastfm_api_key,
            api_url=settings.lastfm_api_url,
            timeout=settings.request_timeout_seconds,
            http_client=client,
        )
        scheduler = SyncScheduler(
            store,
            source,
            ScanOptions.from_settings(settings),
            interval_seconds=settings.update_delay_seconds,
        )
        task = asyncio.create_task(scheduler.run_forever(), name="scrobbles-sync")
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
    logger.info("scrobbles shut down")


# ---------- Error handlers ----------

async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Store error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Storage unavailable"})


# ---------- App factory ----------

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.getLogger("scrobbles").setLevel(settings.log_level.upper())

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Incremental Last.fm listening-history sync with a read-only query API.",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(AccessLogMiddleware)
    app.add_exception_handler(StorePersistenceError, store_error_handler)

    app.include_router(status.router)
    app.include_router(users.router)

    return app


app = create_app()
