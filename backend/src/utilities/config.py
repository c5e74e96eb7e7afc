"""Service settings loaded from the environment and an optional .env file."""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    CHANNEL_QUEUE_SIZE,
    DEFAULT_PORT,
    KEEPALIVE_INTERVAL_SECONDS,
    MAX_CONNECTIONS_PER_STUDENT,
    MISSED_TTL_SECONDS,
    TTL_CLEANUP_INTERVAL_SECONDS,
)


class Settings(BaseSettings):
    """Runtime settings; every field has a default from utilities.constants."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # App
    app_name: str = "grade-notifications"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT

    # CORS
    allowed_origins: str = "*"

    # Delivery
    max_connections_per_student: int = Field(MAX_CONNECTIONS_PER_STUDENT, ge=1)
    keepalive_interval_seconds: float = Field(KEEPALIVE_INTERVAL_SECONDS, gt=0)
    channel_queue_size: int = Field(CHANNEL_QUEUE_SIZE, ge=1)

    # History
    missed_ttl_seconds: float = Field(MISSED_TTL_SECONDS, gt=0)
    ttl_cleanup_interval_seconds: float = Field(TTL_CLEANUP_INTERVAL_SECONDS, gt=0)

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the cached process-wide settings."""
    return Settings()
