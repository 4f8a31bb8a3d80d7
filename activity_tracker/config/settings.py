"""Tracker configuration using Pydantic Settings v2.

Loads configuration from ``ACTIVITY_TRACKER_*`` environment variables with
.env file support. Every value has a default; all are validated at startup.
"""

from __future__ import annotations

import functools
import logging
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class TrackerSettings(BaseSettings):
    """Activity tracker settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACTIVITY_TRACKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Raw log ───────────────────────────────────────────────────
    log_dir: Path = Path("~/.activity_tracker/raw")
    buffer_flush_interval_seconds: float = 1.0
    max_buffer_events: int = 10_000
    segment_max_bytes: int = 100 * 1024 * 1024  # 100 MiB
    segment_max_age_seconds: float = 3600  # 1 hour
    segment_retention_days: int = 30
    fsync_on_flush: bool = False

    # ── Batching ──────────────────────────────────────────────────
    batch_max_events: int = 100
    batch_max_age_seconds: float = 30
    batch_idle_flush_seconds: float = 10
    batch_history_size: int = 100

    # ── Chunking ──────────────────────────────────────────────────
    chunk_gap_seconds: float = 10
    clipboard_max_length: int = 500
    hint_rules_path: Path | None = None

    # ── Interval summaries ────────────────────────────────────────
    interval_summary_seconds: float = 900  # 15 minutes
    accumulator_max_events: int = 1000

    # ── Services ──────────────────────────────────────────────────
    socket_path: Path = Path("~/.activity_tracker/capture.sock")
    health_interval_seconds: float = 300  # 5 minutes
    forward_url: str | None = None
    forward_timeout_seconds: float = 30.0

    log_level: str = "INFO"

    @field_validator(
        "buffer_flush_interval_seconds",
        "max_buffer_events",
        "segment_max_bytes",
        "segment_max_age_seconds",
        "segment_retention_days",
        "batch_max_events",
        "batch_max_age_seconds",
        "batch_idle_flush_seconds",
        "batch_history_size",
        "chunk_gap_seconds",
        "clipboard_max_length",
        "interval_summary_seconds",
        "accumulator_max_events",
        "health_interval_seconds",
        "forward_timeout_seconds",
    )
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level {v!r}")
        return level

    @field_validator("log_dir", "socket_path", "hint_rules_path")
    @classmethod
    def expand_user(cls, v: Path | None) -> Path | None:
        return v.expanduser() if v is not None else None

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)


@functools.lru_cache
def get_settings() -> TrackerSettings:
    """Return cached tracker settings instance."""
    return TrackerSettings()
