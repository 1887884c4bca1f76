"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./reservations.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="30/minute", description="Global rate limiting rule")
    slot_grid_cache_ttl: int = Field(default=3600, description="TTL (s) for cached business-day slot grids")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")

    opening_hour: int = Field(default=9, ge=0, le=23, description="Business hours start (local wall clock)")
    closing_hour: int = Field(default=18, ge=1, le=24, description="Business hours end (local wall clock)")
    slot_minutes: int = Field(default=30, gt=0, description="Width of a generated availability slot")
    min_booking_minutes: int = Field(default=30, gt=0, description="Shortest bookable window")
    max_booking_hours: int = Field(default=120, gt=0, description="Longest bookable window")

    events_backend: Literal["none", "memory", "rabbitmq"] = Field(
        default="none",
        description="Where booking domain events are published.",
    )
    rabbitmq_host: str = Field(default="rabbitmq", description="RabbitMQ host for booking events")
    rabbitmq_queue: str = Field(default="bookings", description="Durable queue receiving booking events")

    users_service_port: int = 8001
    rooms_service_port: int = 8002
    bookings_service_port: int = 8003


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
