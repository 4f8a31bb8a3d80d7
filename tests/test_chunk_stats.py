"""Tests for chunk statistics and the summarizer document."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

from activity_tracker.chunking.chunker import chunk_events
from activity_tracker.chunking.stats import chunk_stats, format_chunks_for_ai

T0 = datetime(2026, 2, 25, 10, 0, 0, tzinfo=UTC)


def _event(t: float, app: str, event_type: str = "element_click", **metadata) -> dict:
    metadata["app_name"] = app
    return {"timestamp": (T0 + timedelta(seconds=t)).isoformat(), "type": event_type, "metadata": metadata}


def _chunks():
    return chunk_events([
        _event(0, "Chrome", url="https://a.example"),
        _event(5, "Chrome", url="https://a.example"),
        _event(8, "Slack"),
        _event(600, "Chrome", "page_view", url="https://b.example"),
    ])


class TestChunkStats:
    def test_counts(self):
        stats = chunk_stats(_chunks())
        assert stats.total_chunks == 3
        assert stats.total_events == 4
        assert stats.apps_used == ["Chrome", "Slack"]
        assert stats.unique_apps == 2
        assert stats.unique_urls == 2
        assert stats.duration_minutes == 10

    def test_empty(self):
        stats = chunk_stats([])
        assert stats.total_chunks == 0
        assert stats.duration_minutes is None
        assert stats.to_dict()["time_span"] is None


class TestFormatForAI:
    def test_document_shape(self):
        generated = datetime(2026, 2, 25, 11, 0, 0, tzinfo=UTC)
        document = json.loads(format_chunks_for_ai(_chunks(), generated_at=generated))

        assert document["metadata"]["total_chunks"] == 3
        assert document["metadata"]["total_events"] == 4
        assert document["metadata"]["generated_at"] == generated.isoformat()
        assert document["metadata"]["time_span"]["start"] == T0.isoformat()
        first = document["activity_chunks"][0]
        assert first["primary_app"] == "Chrome"
        assert first["event_count"] == 2
        assert first["highlights"]["clicked_urls"] == ["https://a.example"]

    def test_empty_document(self):
        document = json.loads(format_chunks_for_ai([]))
        assert document["activity_chunks"] == []
        assert document["metadata"]["time_span"] is None
