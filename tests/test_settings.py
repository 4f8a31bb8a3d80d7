"""Tests for tracker settings."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from activity_tracker.config.settings import TrackerSettings, get_settings


class TestDefaults:
    def test_defaults(self):
        settings = TrackerSettings(_env_file=None)
        assert settings.buffer_flush_interval_seconds == 1.0
        assert settings.max_buffer_events == 10_000
        assert settings.segment_max_bytes == 100 * 1024 * 1024
        assert settings.segment_max_age_seconds == 3600
        assert settings.batch_max_events == 100
        assert settings.batch_max_age_seconds == 30
        assert settings.batch_idle_flush_seconds == 10
        assert settings.chunk_gap_seconds == 10
        assert settings.clipboard_max_length == 500
        assert settings.interval_summary_seconds == 900
        assert settings.forward_url is None
        assert settings.hint_rules_path is None

    def test_paths_are_expanded(self):
        settings = TrackerSettings(_env_file=None)
        assert "~" not in str(settings.log_dir)
        assert settings.log_dir == Path("~/.activity_tracker/raw").expanduser()


class TestEnvironment:
    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ACTIVITY_TRACKER_LOG_DIR", str(tmp_path / "logs"))
        monkeypatch.setenv("ACTIVITY_TRACKER_BATCH_MAX_EVENTS", "25")
        monkeypatch.setenv("ACTIVITY_TRACKER_FORWARD_URL", "http://localhost:8000/batches")
        settings = TrackerSettings(_env_file=None)
        assert settings.log_dir == tmp_path / "logs"
        assert settings.batch_max_events == 25
        assert settings.forward_url == "http://localhost:8000/batches"

    def test_get_settings_is_cached(self, monkeypatch):
        monkeypatch.setenv("ACTIVITY_TRACKER_CHUNK_GAP_SECONDS", "5")
        first = get_settings()
        assert first.chunk_gap_seconds == 5
        assert get_settings() is first


class TestValidation:
    @pytest.mark.parametrize("field", ["max_buffer_events", "chunk_gap_seconds", "interval_summary_seconds"])
    def test_non_positive_rejected(self, field):
        with pytest.raises(ValidationError):
            TrackerSettings(_env_file=None, **{field: 0})

    def test_log_level_normalized(self):
        settings = TrackerSettings(_env_file=None, log_level="debug")
        assert settings.log_level == "DEBUG"
        assert settings.log_level_number == logging.DEBUG

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            TrackerSettings(_env_file=None, log_level="chatty")
