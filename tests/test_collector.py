"""Tests for the raw event collector: buffering, flushing, rotation and stop."""

from __future__ import annotations

import asyncio
import threading
from datetime import timedelta

import pytest

from activity_tracker.buffer.collector import RawEventCollector
from activity_tracker.buffer.segment import iter_session_events, list_segments
from activity_tracker.errors import CollectorStateError, SegmentWriteError
from activity_tracker.events.schema import SESSION_END, SESSION_START, utc_now
from activity_tracker.events.signals import (
    CHANNEL_BUFFER_FLUSHED,
    CHANNEL_ERROR,
    CHANNEL_SEGMENT_ROTATED,
)
from activity_tracker.ipc.protocol import CaptureMessage


def _collector(log_dir, bus, **kwargs) -> RawEventCollector:
    kwargs.setdefault("flush_interval_seconds", 60)
    return RawEventCollector(log_dir, bus, **kwargs)


def _logged(log_dir, session="s1"):
    return list(iter_session_events(log_dir, session))


class TestLifecycle:
    def test_record_before_start_is_skipped(self, log_dir, bus, caplog):
        collector = _collector(log_dir, bus)
        assert collector.record_raw_event("os_hooks", "key_down", {}) is None
        assert "not active" in caplog.text

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, log_dir, bus):
        collector = _collector(log_dir, bus)
        await collector.start("s1")
        with pytest.raises(CollectorStateError):
            await collector.start("s2")
        await collector.stop()

    @pytest.mark.asyncio
    async def test_stop_writes_markers_and_events(self, log_dir, bus):
        collector = _collector(log_dir, bus)
        await collector.start("s1")
        for i in range(3):
            collector.record_raw_event("os_hooks", "key_down", {"key_code": i})
        stats = await collector.stop()

        events = _logged(log_dir)
        assert [e.event_type for e in events] == [SESSION_START, "key_down", "key_down", "key_down", SESSION_END]
        assert [e.sequence_id for e in events] == [1, 2, 3, 4, 5]
        assert events[-1].payload["final_stats"]["total_events"] == 4
        assert stats["total_events"] == 5
        assert not collector.is_active
        assert collector.record_raw_event("os_hooks", "key_down", {}) is None

    @pytest.mark.asyncio
    async def test_stop_when_inactive_returns_stats(self, log_dir, bus):
        collector = _collector(log_dir, bus)
        stats = await collector.stop()
        assert stats["total_events"] == 0

    @pytest.mark.asyncio
    async def test_new_session_resets_state(self, log_dir, bus):
        collector = _collector(log_dir, bus)
        await collector.start("s1")
        collector.record_raw_event("os_hooks", "key_down", {})
        await collector.stop()

        await collector.start("s2")
        event = collector.record_raw_event("os_hooks", "key_down", {})
        await collector.stop()

        assert event.sequence_id == 2  # after the s2 session_start marker
        assert event.session_id == "s2"
        assert len(_logged(log_dir, "s1")) == 3
        assert len(_logged(log_dir, "s2")) == 3


class TestIngestion:
    @pytest.mark.asyncio
    async def test_event_is_stamped_and_kept_verbatim(self, log_dir, bus, clock):
        collector = _collector(log_dir, bus, clock=clock)
        await collector.start("s1")
        payload = {"password_field": "hunter2", "nested": {"x": [1, 2]}}
        event = collector.record_raw_event("dom", "text_input", payload)
        await collector.stop()

        assert event.timestamp == clock.now
        assert event.payload is payload
        logged = [e for e in _logged(log_dir) if e.event_type == "text_input"]
        assert logged[0].payload == payload

    @pytest.mark.asyncio
    async def test_malformed_payloads_are_recorded(self, log_dir, bus):
        collector = _collector(log_dir, bus)
        await collector.start("s1")
        collector.record_raw_event("ipc", "odd", None)
        collector.record_raw_event("ipc", "odd", "plain string")
        collector.record_raw_event("ipc", "odd", {"obj": object()})
        await collector.stop()
        assert len([e for e in _logged(log_dir) if e.event_type == "odd"]) == 3

    @pytest.mark.asyncio
    async def test_buffer_never_exceeds_maximum(self, log_dir, bus):
        collector = _collector(log_dir, bus, max_buffer_events=5)
        await collector.start("s1")
        for i in range(23):
            collector.record_raw_event("os_hooks", "key_down", {"i": i})
            assert collector.buffer_size <= 5
        await collector.stop()

        sequences = [e.sequence_id for e in _logged(log_dir)]
        assert sequences == list(range(1, 26))
        assert collector.stats()["forced_flushes"] >= 4

    @pytest.mark.asyncio
    async def test_recent_events(self, log_dir, bus):
        collector = _collector(log_dir, bus)
        await collector.start("s1")
        for i in range(5):
            collector.record_raw_event("os_hooks", "key_down", {"i": i})
        recent = collector.recent_events(limit=2)
        assert [e.payload["i"] for e in recent] == [3, 4]
        await collector.stop()


class TestFlush:
    @pytest.mark.asyncio
    async def test_flush_is_order_preserving_and_idempotent(self, log_dir, bus):
        flushed = []
        bus.subscribe(CHANNEL_BUFFER_FLUSHED, flushed.append)
        collector = _collector(log_dir, bus)
        await collector.start("s1")
        for i in range(4):
            collector.record_raw_event("os_hooks", "key_down", {"i": i})

        assert await collector.flush() == 5
        assert await collector.flush() == 0
        assert collector.pending_count == 0
        assert flushed[0]["event_count"] == 5
        await collector.stop()

        assert [e.sequence_id for e in _logged(log_dir)] == list(range(1, 7))

    @pytest.mark.asyncio
    async def test_periodic_flush_timer(self, log_dir, bus):
        collector = _collector(log_dir, bus, flush_interval_seconds=0.01)
        await collector.start("s1")
        collector.record_raw_event("os_hooks", "key_down", {})
        await asyncio.sleep(0.1)
        assert collector.pending_count == 0
        assert collector.stats()["events_written"] == 2
        await collector.stop()

    @pytest.mark.asyncio
    async def test_events_during_in_flight_flush_go_to_next_generation(self, log_dir, bus, monkeypatch):
        collector = _collector(log_dir, bus)
        await collector.start("s1")
        collector.record_raw_event("os_hooks", "key_down", {"gen": 1})

        writer = collector._writer
        real_append = writer.append
        gate = threading.Event()

        def slow_append(events):
            gate.wait(2)
            return real_append(events)

        monkeypatch.setattr(writer, "append", slow_append)
        task = asyncio.create_task(collector.flush())
        await asyncio.sleep(0.02)  # flush is now blocked in the worker thread
        for _ in range(3):
            collector.record_raw_event("os_hooks", "key_down", {"gen": 2})
        assert collector.buffer_size == 3

        gate.set()
        assert await task == 2
        assert collector.buffer_size == 3
        await collector.stop()

        events = _logged(log_dir)
        assert [e.sequence_id for e in events] == list(range(1, 7))

    @pytest.mark.asyncio
    async def test_write_failure_retries_remainder_without_duplicates(self, log_dir, bus, monkeypatch):
        errors = []
        bus.subscribe(CHANNEL_ERROR, errors.append)
        collector = _collector(log_dir, bus)
        await collector.start("s1")

        writer = collector._writer
        real_append = writer.append
        state = {"failed": False}

        def flaky_append(events):
            if not state["failed"]:
                state["failed"] = True
                real_append(events[:2])
                raise SegmentWriteError("disk full", written=2)
            return real_append(events)

        monkeypatch.setattr(writer, "append", flaky_append)
        for i in range(5):
            collector.record_raw_event("os_hooks", "key_down", {"i": i})

        assert await collector.flush() == 2
        assert collector.pending_count == 4
        assert len(errors) == 1
        assert errors[0]["component"] == "raw_log"
        assert errors[0]["detail"]["retrying"] == 4

        # Ingestion continues while the remainder waits
        collector.record_raw_event("os_hooks", "key_down", {"i": 5})
        assert await collector.flush() == 5
        await collector.stop()

        sequences = [e.sequence_id for e in _logged(log_dir)]
        assert sequences == list(range(1, 9))
        assert collector.stats()["write_failures"] == 1


class TestRotation:
    @pytest.mark.asyncio
    async def test_size_rotation_is_published(self, log_dir, bus):
        rotations = []
        bus.subscribe(CHANNEL_SEGMENT_ROTATED, rotations.append)
        collector = _collector(log_dir, bus, segment_max_bytes=400)
        await collector.start("s1")
        for i in range(5):
            collector.record_raw_event("os_hooks", "key_down", {"i": i})
        await collector.flush()
        await collector.stop()

        assert rotations
        assert rotations[0]["reason"] == "size"
        assert len(list_segments(log_dir, "s1")) > 1
        assert [e.sequence_id for e in _logged(log_dir)] == list(range(1, 8))

    @pytest.mark.asyncio
    async def test_age_rotation_timer(self, log_dir, bus):
        rotations = []
        bus.subscribe(CHANNEL_SEGMENT_ROTATED, rotations.append)
        collector = _collector(log_dir, bus, segment_max_age_seconds=0.05)
        await collector.start("s1")
        collector.record_raw_event("os_hooks", "key_down", {})
        await asyncio.sleep(0.2)
        await collector.stop()

        assert any(r["reason"] == "max_age" for r in rotations)
        # Empty segments are not rotated repeatedly
        assert len(list_segments(log_dir, "s1")) == 2
        assert [e.sequence_id for e in _logged(log_dir)] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_manual_rotate(self, log_dir, bus):
        collector = _collector(log_dir, bus)
        await collector.start("s1")
        first = collector.current_segment
        collector.record_raw_event("os_hooks", "key_down", {})
        new = await collector.rotate()
        assert new != first
        await collector.stop()
        assert [e.sequence_id for e in _logged(log_dir)] == [1, 2, 3]


class TestUnencodablePayloads:
    @pytest.mark.asyncio
    async def test_lone_surrogate_is_persisted_with_later_events(self, log_dir, bus):
        errors = []
        bus.subscribe(CHANNEL_ERROR, errors.append)
        collector = _collector(log_dir, bus)
        await collector.start("s1")

        message = CaptureMessage.from_line('{"layer": "dom", "event_type": "clipboard_change", "payload": {"content": "\\ud800"}}')
        collector.record_raw_event("os_hooks", "key_down", {"key_code": 1})
        collector.record_raw_event(message.layer, message.event_type, message.payload)
        collector.record_raw_event("os_hooks", "key_down", {"key_code": 3})

        assert await collector.flush() == 4
        assert collector.pending_count == 0
        await collector.stop()

        events = _logged(log_dir)
        assert [e.event_type for e in events] == [SESSION_START, "key_down", "clipboard_change", "key_down", SESSION_END]
        assert events[2].payload == {"content": "\ud800"}
        assert errors == []

    @pytest.mark.asyncio
    async def test_unexpected_writer_error_keeps_events_queued(self, log_dir, bus, monkeypatch):
        errors = []
        bus.subscribe(CHANNEL_ERROR, errors.append)
        collector = _collector(log_dir, bus)
        await collector.start("s1")

        writer = collector._writer
        real_append = writer.append
        state = {"failed": False}

        def broken_once(events):
            if not state["failed"]:
                state["failed"] = True
                raise RuntimeError("encoder exploded")
            return real_append(events)

        monkeypatch.setattr(writer, "append", broken_once)
        for i in range(3):
            collector.record_raw_event("os_hooks", "key_down", {"i": i})

        assert await collector.flush() == 0
        assert collector.pending_count == 4
        assert errors[0]["component"] == "raw_log"
        assert errors[0]["detail"]["retrying"] == 4

        assert await collector.flush() == 4
        await collector.stop()
        assert [e.sequence_id for e in _logged(log_dir)] == [1, 2, 3, 4, 5]


class TestAgeRotation:
    @pytest.mark.asyncio
    async def test_young_segment_is_not_rotated(self, log_dir, bus, monkeypatch):
        rotations = []
        bus.subscribe(CHANNEL_SEGMENT_ROTATED, rotations.append)
        collector = _collector(log_dir, bus, segment_max_age_seconds=600)
        await collector.start("s1")
        collector.record_raw_event("os_hooks", "key_down", {})

        await collector._rotate_for_age()
        assert rotations == []

        monkeypatch.setattr(collector._writer, "opened_at", utc_now() - timedelta(minutes=11))
        await collector._rotate_for_age()
        assert [r["reason"] for r in rotations] == ["max_age"]
        await collector.stop()

    @pytest.mark.asyncio
    async def test_size_rotation_restarts_age(self, log_dir, bus):
        rotations = []
        bus.subscribe(CHANNEL_SEGMENT_ROTATED, rotations.append)
        collector = _collector(log_dir, bus, segment_max_bytes=400, segment_max_age_seconds=600)
        await collector.start("s1")
        first_opened = collector._writer.opened_at
        for i in range(5):
            collector.record_raw_event("os_hooks", "key_down", {"i": i})
        await collector.flush()
        assert collector._writer.opened_at > first_opened

        await collector._rotate_for_age()
        assert all(r["reason"] == "size" for r in rotations)
        assert collector.stats()["current_segment_bytes"] > 0
        await collector.stop()
