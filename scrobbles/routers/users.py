"""User registration and per-user history endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from scrobbles.dependencies import Store
from scrobbles.models.base import ErrorBody
from scrobbles.models.history import RecordRead, UserCreated, UserStatus
from scrobbles.storage.history import DuplicateRegistrationError

router = APIRouter(prefix="/user", tags=["users"])
logger = logging.getLogger("scrobbles.users")


@router.get("/{username}/records", response_model=list[RecordRead])
async def list_user_records(username: str, store: Store) -> Any:
    """All stored plays for a user, newest first."""
    records = await store.get_records(username)
    records.sort(key=lambda r: r.timestamp, reverse=True)
    return [RecordRead.from_record(r) for r in records]


@router.get("/{username}/status", response_model=UserStatus)
async def get_user_status(username: str, store: Store) -> Any:
    """Last scan summary plus total stored records."""
    watermark, total = await store.get_status(username)
    return UserStatus.from_watermark(watermark, total_records=total)


@router.post(
    "/{username}",
    response_model=UserCreated,
    responses={400: {"model": ErrorBody}},
)
async def register_user(username: str, store: Store) -> Any:
    """Register a user for periodic sync."""
    try:
        await store.add_user(username)
    except DuplicateRegistrationError as exc:
        logger.info("Rejected duplicate registration for %s", username)
        return JSONResponse(status_code=400, content={"error": str(exc)})
    return UserCreated(username=username)
