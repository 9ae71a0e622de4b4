"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from scrobbles.config import Settings, get_settings
from scrobbles.storage.history import HistoryStore


def get_store(request: Request) -> HistoryStore:
    """Return the HistoryStore opened by the application lifespan."""
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


# Annotated shortcuts for route signatures
Store = Annotated[HistoryStore, Depends(get_store)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
