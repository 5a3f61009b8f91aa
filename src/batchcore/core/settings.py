"""Engine settings loaded from the environment.

Configuration is explicit, validated, and environment-driven. Every field
can be set through a ``BATCH_``-prefixed environment variable or a
``.env`` file in the working directory.

Fields
──────
database_url        : SQLAlchemy URL of the execution repository
                      (unset = in-memory repository)
log_level           : structlog log level
log_json            : force JSON (True) or console (False) logs; unset = auto
default_chunk_size  : chunk size used when a ChunkStep does not set one
max_split_workers   : worker threads used by split steps

Examples:
    >>> import os
    >>> os.environ["BATCH_DEFAULT_CHUNK_SIZE"] = "50"
    >>> clear_settings_cache()
    >>> get_settings().default_chunk_size
    50

Tags:
    settings, configuration, pydantic, environment, batch-core
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BatchSettings(BaseSettings):
    """Settings shared by the engine, the launcher and the CLI."""

    model_config = SettingsConfigDict(
        env_prefix="BATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Persistence ──────────────────────────────────────────────
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL for the execution repository",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Execution ────────────────────────────────────────────────
    default_chunk_size: int = Field(default=10, ge=1)
    max_split_workers: int = Field(default=4, ge=1)

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


_settings_cache: dict[str, BatchSettings] = {}


def get_settings(*, _force_reload: bool = False) -> BatchSettings:
    """Load, validate, and cache a :class:`BatchSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    settings = BatchSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
