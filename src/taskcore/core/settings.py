"""Centralized settings for taskcore.

Defaults for the cache, queue and retry policy are read from ``TASKCORE_*``
environment variables (or a ``.env`` file) and validated once at startup.
Every component still takes explicit constructor arguments; settings only
supply the values a caller did not pass.

Fields
──────
default_ttl_seconds : TTL applied when ``run``/``get_or_compute`` gets none
max_attempts        : Attempts per task, first try included
max_concurrency     : Running-task bound of the shared queue
max_queue_length    : Waiting-task bound (``None`` → unbounded)
cache_capacity      : LRU bound on fresh cache entries (``None`` → unbounded)
backoff_base_delay  : First retry delay in seconds (before jitter)
backoff_max_delay   : Delay cap in seconds
backoff_seed        : Seed for deterministic jitter
log_level           : structlog log level
log_format          : ``json`` or ``console``

Examples:
    >>> import os
    >>> os.environ["TASKCORE_MAX_CONCURRENCY"] = "4"
    >>> get_settings(_force_reload=True).max_concurrency
    4
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TaskCoreSettings(BaseSettings):
    """taskcore configuration, overridable via ``TASKCORE_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="TASKCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Cache ────────────────────────────────────────────────────
    default_ttl_seconds: float = Field(default=60.0, ge=0)
    cache_capacity: int | None = Field(default=None, ge=1)

    # ── Queue ────────────────────────────────────────────────────
    max_concurrency: int = Field(default=10, ge=1)
    max_queue_length: int | None = Field(default=None, ge=0)

    # ── Retry ────────────────────────────────────────────────────
    max_attempts: int = Field(default=3, ge=1)
    backoff_base_delay: float = Field(default=0.1, ge=0)
    backoff_max_delay: float = Field(default=10.0, ge=0)
    backoff_seed: int | None = Field(default=None)

    # ── Logging ──────────────────────────────────────────────────
    service_name: str = Field(default="taskcore")
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> TaskCoreSettings:
        if self.backoff_max_delay < self.backoff_base_delay:
            raise ValueError(
                f"backoff_max_delay ({self.backoff_max_delay}) must be >= "
                f"backoff_base_delay ({self.backoff_base_delay})"
            )
        return self


_settings_cache: dict[str, TaskCoreSettings] = {}


def get_settings(*, _force_reload: bool = False) -> TaskCoreSettings:
    """Load, validate, and cache a :class:`TaskCoreSettings` instance."""
    if _force_reload or "default" not in _settings_cache:
        _settings_cache["default"] = TaskCoreSettings()
    return _settings_cache["default"]


def clear_settings_cache() -> None:
    """Drop the cached settings (tests and reconfiguration)."""
    _settings_cache.clear()


__all__ = ["TaskCoreSettings", "get_settings", "clear_settings_cache"]
