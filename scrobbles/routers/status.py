"""System status and health endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from scrobbles.dependencies import AppSettings, Store
from scrobbles.models.history import SystemStatus
from scrobbles.storage.kv import StorePersistenceError

router = APIRouter(tags=["system"])
logger = logging.getLogger("scrobbles.health")


@router.get("/status", response_model=SystemStatus)
async def system_status(store: Store) -> SystemStatus:
    """Registered users."""
    return SystemStatus(users=await store.get_users())


@router.get("/health")
async def health_check(store: Store, settings: AppSettings) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also performs a lightweight store read.
    """
    db_ok = False
    synced = 0
    try:
        synced = len(await store.synced_users())
        db_ok = True
    except StorePersistenceError as exc:
        logger.warning("Health check store probe failed: %s", exc)

    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "synced_users": synced,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
