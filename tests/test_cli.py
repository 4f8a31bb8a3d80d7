"""Tests for the command-line entry points."""

from __future__ import annotations

import json
import os
import time
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from activity_tracker.buffer.segment import SegmentWriter, list_segments
from activity_tracker.cli import _shutdown, main
from activity_tracker.pipeline import TrackerPipeline
from activity_tracker.upload.batch_forwarder import BatchForwarder
from activity_tracker.events.schema import SESSION_END, SESSION_START, RawEvent

T0 = datetime(2026, 2, 25, 10, 0, 0, tzinfo=UTC)


@pytest.fixture
def logged_session(log_dir):
    writer = SegmentWriter(log_dir, "s1", max_bytes=1024 * 1024)
    writer.open()
    events = [RawEvent(T0, "snapshots", SESSION_START, {"session_id": "s1"}, "s1", 1)]
    for i in range(4):
        payload = {"app_name": "Slack" if i < 2 else "Chrome", "text": f"msg {i}"}
        events.append(RawEvent(T0 + timedelta(seconds=i + 1), "dom", "text_input", payload, "s1", i + 2))
    events.append(RawEvent(T0 + timedelta(seconds=6), "snapshots", SESSION_END, {"session_id": "s1"}, "s1", 6))
    writer.append(events)
    writer.close()
    return log_dir


class TestChunksCommand:
    def test_prints_chunks_without_session_markers(self, logged_session, capsys):
        assert main(["chunks", str(logged_session)]) == 0
        document = json.loads(capsys.readouterr().out)

        assert document["metadata"]["total_events"] == 4
        assert [c["primary_app"] for c in document["activity_chunks"]] == ["Slack", "Chrome"]
        assert document["activity_chunks"][0]["summary_hint"] == "Team communication and messaging"

    def test_session_filter(self, logged_session, capsys):
        assert main(["chunks", str(logged_session), "--session", "other"]) == 1
        assert "No raw log segments" in capsys.readouterr().err

    def test_missing_directory(self, tmp_path, capsys):
        assert main(["chunks", str(tmp_path / "missing")]) == 1


class TestCleanupCommand:
    def test_deletes_expired_segments(self, logged_session, capsys):
        old = time.time() - 40 * 86400
        for path in list_segments(logged_session):
            os.utime(path, (old, old))

        assert main(["cleanup", str(logged_session), "--retention-days", "30"]) == 0
        assert "Deleted 1 segment(s)" in capsys.readouterr().out
        assert list_segments(logged_session) == []

    def test_keeps_recent_segments(self, logged_session, capsys):
        assert main(["cleanup", str(logged_session)]) == 0
        assert len(list_segments(logged_session)) == 1


class TestArguments:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            main([])


class TestShutdown:
    @pytest.mark.asyncio
    async def test_final_batch_is_forwarded(self, test_settings):
        forwarded = []

        def handler(request: httpx.Request) -> httpx.Response:
            forwarded.append(request.headers["X-Batch-Id"])
            return httpx.Response(202)

        pipeline = TrackerPipeline(test_settings)
        forwarder = BatchForwarder("http://collector.test/batches", httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        forwarder.attach(pipeline.bus)
        await pipeline.start("s1")
        pipeline.record_raw_event("os_hooks", "key_down", {"key_code": 4})

        await _shutdown(pipeline, forwarder)

        assert forwarded == [pipeline.batch_former.last_batch.id]
        assert forwarder.queue_size == 0
