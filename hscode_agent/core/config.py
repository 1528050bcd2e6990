"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the analysis workflow and
the scheduler pump share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path

import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file into the environment.

    Nested settings sections are instantiated through ``default_factory`` and
    only see real environment variables, so the file is folded in up front.
    """
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class ClassificationSettings(BaseSettings):
    """Connection details for the external classification service."""

    base_url: str = Field(
        "http://localhost:8080/api",
        description="Root URL of the classification API (without trailing slash).",
    )
    request_timeout_seconds: float = 30.0
    retry_attempts: int = 3
    retry_backoff_seconds: float = 1.0

    model_config = SettingsConfigDict(env_prefix="CLASSIFICATION_")

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("request_timeout_seconds", "retry_attempts")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value


class WorkflowSettings(BaseSettings):
    """Timing policy for the analysis session workflow."""

    call_timeout_seconds: float = Field(
        30.0,
        description="Deadline for any single call into the classification service.",
    )
    poll_interval_seconds: float = 2.0
    poll_deadline_seconds: float = 120.0
    session_retention: int = Field(
        200,
        description="Terminal sessions kept in memory before the oldest are forgotten.",
    )

    model_config = SettingsConfigDict(env_prefix="WORKFLOW_")

    @field_validator(
        "call_timeout_seconds",
        "poll_interval_seconds",
        "poll_deadline_seconds",
        "session_retention",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value


class CacheSettings(BaseSettings):
    """Bounds for the result cache and notification ledger."""

    recent_limit: int = 10
    notification_limit: int = 100
    notification_ttl_hours: float = 24.0
    scheduler_tick_seconds: float = 30.0
    dashboard_viewer_limit: int = 64

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    @field_validator(
        "recent_limit",
        "notification_limit",
        "notification_ttl_hours",
        "scheduler_tick_seconds",
        "dashboard_viewer_limit",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    storage_db_path: str = Field(
        "data/hscode_agent.db",
        validation_alias="STORAGE_DB_PATH",
        description="SQLite file holding the durable result and notification stores.",
    )
    classification: ClassificationSettings = Field(
        default_factory=ClassificationSettings
    )
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()


__all__ = [
    "AppSettings",
    "CacheSettings",
    "ClassificationSettings",
    "WorkflowSettings",
    "get_settings",
]
