"""Shared test fixtures for the activity tracker tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from activity_tracker.config.settings import TrackerSettings, get_settings
from activity_tracker.events.signals import SignalBus

BASE_TIME = datetime(2026, 2, 25, 10, 0, 0, tzinfo=UTC)


class ManualClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        self.now += timedelta(seconds=seconds, minutes=minutes)
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def bus():
    return SignalBus()


@pytest.fixture
def log_dir(tmp_path):
    """Provide a temporary raw log directory."""
    return tmp_path / "raw"


@pytest.fixture
def test_settings(tmp_path, log_dir) -> TrackerSettings:
    """Settings with timers slow enough that tests drive flushes explicitly."""
    return TrackerSettings(
        _env_file=None,
        log_dir=log_dir,
        socket_path=tmp_path / "capture.sock",
        buffer_flush_interval_seconds=60,
        segment_max_age_seconds=3600,
        batch_idle_flush_seconds=60,
        batch_max_age_seconds=120,
        interval_summary_seconds=900,
    )


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
