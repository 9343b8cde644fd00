# src/perpindexer/config.py
"""
Application settings, loaded from the environment and an optional .env file.

Only boot.py and the database engine module read `settings`; services get
explicit values at construction.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment / primary store
    ENV: str = Field(default="dev")
    DATABASE_URL: str = Field(default="sqlite:///./perpindexer.db")
    STREAM_NAME: str = Field(default="default")

    # Secondary store (PostgREST-compatible). Unset URL disables mirroring.
    SECONDARY_STORE_URL: str | None = None
    SECONDARY_STORE_API_KEY: str | None = None
    SECONDARY_STORE_TIMEOUT: float = 10.0
    SECONDARY_MAX_INFLIGHT: int = 16

    # Stream continuity / reconstruction
    RESET_TOLERANCE_BLOCKS: int = 50
    BACKFILL_WINDOW_BLOCKS: int = 10_000
    POLL_INTERVAL_SECONDS: float = 5.0

    # Client mirror
    LOCAL_STATE_DIR: str = Field(default="./.perpindexer-state")

    # API / Security
    API_KEY: str | None = None

    # Observability
    METRICS_ENABLED: bool = True


settings = Settings()
