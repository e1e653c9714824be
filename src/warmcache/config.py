"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates limits and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Cache subsystem settings loaded from environment variables.

    Storage:
        CACHE_PREFIX: Namespace prefix for every stored key
        CACHE_DB_PATH: SQLite file backing the durable medium and response caches
        SESSION_QUOTA_BYTES: Optional byte quota for the session medium

    Interceptor:
        APP_NAME: Name used for response cache objects
        CACHE_VERSION_TAG: Agent generation tag carried by response cache names
        APP_ORIGIN: Origin that relative URLs are resolved against
        CRITICAL_API_URLS: API URLs refreshed by the cache-update background sync

    Warming:
        WARMING_MAX_CONCURRENT: Maximum warming tasks running at once
        WARMING_TASK_DELAY_MS: Delay between task dispatches
        IDLE_POLL_MS / IDLE_POLL_MAX_MS: Idle polling interval and backoff ceiling
        WARMING_MAX_REQUEUES: Idle deferrals allowed before a task is forced
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    CACHE_PREFIX: str = Field(
        default="warmcache-", min_length=1, description="Prefix for stored keys"
    )
    CACHE_DB_PATH: Path = Field(
        default=Path(".cache/warmcache.db"), description="Durable SQLite file"
    )
    SESSION_QUOTA_BYTES: int | None = Field(
        default=None, ge=1, description="Byte quota for the session medium"
    )

    # Interceptor
    APP_NAME: str = Field(default="app", min_length=1, description="Application name")
    CACHE_VERSION_TAG: str = Field(
        default="v1", min_length=1, description="Response cache generation tag"
    )
    APP_ORIGIN: str = Field(
        default="http://localhost:8080", description="Application origin"
    )
    REFERENCE_API_HOSTS: list[str] = Field(
        default_factory=lambda: ["servicodados.ibge.gov.br"],
        description="Third-party reference data hosts",
    )
    DATA_API_HOSTS: list[str] = Field(
        default_factory=lambda: ["supabase.co"],
        description="Hosts serving dynamic listing data",
    )
    APP_ROUTE_PREFIXES: list[str] = Field(
        default_factory=lambda: ["search", "favorites", "account", "auth"],
        description="First path segments of application navigation routes",
    )
    CRITICAL_API_URLS: list[str] = Field(
        default_factory=list,
        description="API URLs refreshed into the api cache by the cache-update sync",
    )

    # Warming
    WARMING_MAX_CONCURRENT: int = Field(
        default=2, ge=1, le=16, description="Maximum concurrent warming tasks"
    )
    WARMING_TASK_DELAY_MS: int = Field(
        default=1500, ge=0, description="Delay between warming dispatches"
    )
    IDLE_POLL_MS: int = Field(default=500, ge=1, description="Idle poll interval")
    IDLE_POLL_MAX_MS: int = Field(
        default=5000, ge=1, description="Idle poll backoff ceiling"
    )
    WARMING_MAX_REQUEUES: int | None = Field(
        default=20, ge=0, description="Idle deferrals before a task is forced"
    )

    # Cleanup timer
    CLEANUP_INITIAL_DELAY_S: float = Field(
        default=10.0, ge=0.0, description="Delay before the first cleanup"
    )
    CLEANUP_INTERVAL_S: float = Field(
        default=1800.0, gt=0.0, description="Interval between cleanups"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON Lines log file")

    @field_validator("APP_ORIGIN")
    @classmethod
    def validate_origin(cls, v: str) -> str:
        """Validate that APP_ORIGIN is an absolute http(s) origin."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("APP_ORIGIN must start with http:// or https://")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_idle_backoff(self) -> Settings:
        """Ensure the idle backoff ceiling is not below the base interval."""
        if self.IDLE_POLL_MAX_MS < self.IDLE_POLL_MS:
            raise ValueError("IDLE_POLL_MAX_MS must be >= IDLE_POLL_MS")
        return self

    def ensure_directories(self) -> None:
        """Create the directory holding the durable database."""
        self.CACHE_DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | None]:
        """Return settings as display-ready scalars."""
        return {
            "CACHE_PREFIX": self.CACHE_PREFIX,
            "CACHE_DB_PATH": str(self.CACHE_DB_PATH),
            "SESSION_QUOTA_BYTES": self.SESSION_QUOTA_BYTES,
            "APP_NAME": self.APP_NAME,
            "CACHE_VERSION_TAG": self.CACHE_VERSION_TAG,
            "APP_ORIGIN": self.APP_ORIGIN,
            "REFERENCE_API_HOSTS": ", ".join(self.REFERENCE_API_HOSTS),
            "DATA_API_HOSTS": ", ".join(self.DATA_API_HOSTS),
            "APP_ROUTE_PREFIXES": ", ".join(self.APP_ROUTE_PREFIXES),
            "CRITICAL_API_URLS": ", ".join(self.CRITICAL_API_URLS),
            "WARMING_MAX_CONCURRENT": self.WARMING_MAX_CONCURRENT,
            "WARMING_TASK_DELAY_MS": self.WARMING_TASK_DELAY_MS,
            "IDLE_POLL_MS": self.IDLE_POLL_MS,
            "IDLE_POLL_MAX_MS": self.IDLE_POLL_MAX_MS,
            "WARMING_MAX_REQUEUES": self.WARMING_MAX_REQUEUES,
            "CLEANUP_INITIAL_DELAY_S": self.CLEANUP_INITIAL_DELAY_S,
            "CLEANUP_INTERVAL_S": self.CLEANUP_INTERVAL_S,
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
