"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "scrobbles"
    app_version: str = "0.1.0"
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- HTTP listener ---
    host: str = "0.0.0.0"
    port: int = 8000

    # --- Last.fm ---
    lastfm_api_key: str = ""  # required when sync_enabled
    lastfm_api_url: str = "http://ws.audioscrobbler.com/2.0/"
    request_timeout_seconds: float = Field(default=15.0, gt=0)

    # --- Storage ---
    db_path: str = "stat.db"

    # --- Sync loop ---
    sync_enabled: bool = True
    update_delay_seconds: int = Field(default=60, ge=1)
    page_size: int = Field(default=200, ge=1, le=200)  # Last.fm caps limit at 200
    max_pages: int = Field(default=10_000, ge=1)
    fetch_attempts: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=2.0, ge=0)
    page_delay_ms: int = Field(default=250, ge=0)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
