"""Raw event buffer and durable log writer.

Every capture source calls ``record_raw_event``; the event is stamped with a
timestamp and a per-session sequence id, appended to an in-memory buffer and
returned immediately. A periodic timer drains the buffer into the current
log segment; a second timer rotates a segment once it has been open for
``segment_max_age_seconds``.

Buffer generations: a flush takes ownership of everything buffered so far
and writes it through ``asyncio.to_thread``. Events arriving while the write
is in flight go to the next generation, never into the list being written.
Events a failed write did not persist are kept ahead of newer events and
retried on the next flush.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from activity_tracker.buffer.segment import SegmentWriter
from activity_tracker.errors import CollectorStateError, SegmentWriteError
from activity_tracker.events.schema import SESSION_END, SESSION_START, EventLayer, RawEvent, utc_now
from activity_tracker.events.signals import (
    CHANNEL_BUFFER_FLUSHED,
    CHANNEL_ERROR,
    CHANNEL_SEGMENT_ROTATED,
    SignalBus,
    buffer_flushed_event,
    error_event,
    segment_rotated_event,
)
from activity_tracker.timers import PeriodicTimer

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_INTERVAL_SECONDS = 1.0
DEFAULT_MAX_BUFFER_EVENTS = 10_000
DEFAULT_SEGMENT_MAX_BYTES = 100 * 1024 * 1024  # 100 MB
DEFAULT_SEGMENT_MAX_AGE_SECONDS = 3600  # 1 hour
STOP_FLUSH_ATTEMPTS = 3
ROTATION_CHECK_SECONDS = 60.0


class RawEventCollector:
    """Accepts raw events unconditionally and persists them to rotating segments."""

    def __init__(
        self,
        log_dir: str | Path,
        bus: SignalBus | None = None,
        *,
        flush_interval_seconds: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
        max_buffer_events: int = DEFAULT_MAX_BUFFER_EVENTS,
        segment_max_bytes: int = DEFAULT_SEGMENT_MAX_BYTES,
        segment_max_age_seconds: float = DEFAULT_SEGMENT_MAX_AGE_SECONDS,
        fsync: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_buffer_events < 1:
            raise ValueError("max_buffer_events must be at least 1")
        self.log_dir = Path(log_dir).expanduser()
        self.bus = bus or SignalBus()
        self.flush_interval_seconds = flush_interval_seconds
        self.max_buffer_events = max_buffer_events
        self.segment_max_bytes = segment_max_bytes
        self.segment_max_age_seconds = segment_max_age_seconds
        self.fsync = fsync
        self._clock = clock

        self._session_id: str | None = None
        self._active = False
        self._sequence = 0
        self._buffer: list[RawEvent] = []
        self._unwritten: list[RawEvent] = []
        self._writer: SegmentWriter | None = None
        self._lock = asyncio.Lock()
        self._flush_task: asyncio.Task[int] | None = None
        self._flush_timer: PeriodicTimer | None = None
        self._rotate_timer: PeriodicTimer | None = None
        self._reset_stats()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def current_segment(self) -> Path | None:
        return self._writer.current_path if self._writer else None

    async def start(self, session_id: str) -> None:
        """Open the first segment for session_id and arm the flush and rotation timers."""
        if self._active:
            raise CollectorStateError(f"Collector already active for session {self._session_id}")

        self._session_id = session_id
        self._sequence = 0
        self._buffer = []
        self._unwritten = []
        self._lock = asyncio.Lock()
        self._reset_stats()

        self._writer = SegmentWriter(
            self.log_dir,
            session_id,
            max_bytes=self.segment_max_bytes,
            fsync=self.fsync,
        )
        await asyncio.to_thread(self._writer.open)
        self._active = True

        self._flush_timer = PeriodicTimer("raw-buffer-flush", self.flush_interval_seconds, self.flush)
        self._rotate_timer = PeriodicTimer(
            "raw-segment-rotate",
            min(self.segment_max_age_seconds, ROTATION_CHECK_SECONDS),
            self._rotate_for_age,
        )
        self._flush_timer.start()
        self._rotate_timer.start()

        self._record(
            EventLayer.SNAPSHOTS,
            SESSION_START,
            {"session_id": session_id, "log_dir": str(self.log_dir)},
        )
        logger.info("Started raw data collection for session %s", session_id)

    async def stop(self) -> dict[str, Any]:
        """Drain timers, persist everything, append the session end marker and close.

        No timer fires after this coroutine returns. Returns final statistics.
        """
        if not self._active:
            return self.stats()

        for timer in (self._flush_timer, self._rotate_timer):
            if timer is not None:
                await timer.stop()
        if self._flush_task is not None:
            await self._flush_task

        await self._flush_until_empty()
        self._record(
            EventLayer.SNAPSHOTS,
            SESSION_END,
            {"session_id": self._session_id, "final_stats": self.stats()},
        )
        self._active = False
        await self._flush_until_empty()

        if self._unwritten:
            logger.error(
                "Raw log stopped with %d events not persisted for session %s",
                len(self._unwritten),
                self._session_id,
            )
            self.bus.publish(
                CHANNEL_ERROR,
                error_event(
                    "raw_log",
                    "Events could not be persisted before stop",
                    {"session_id": self._session_id, "unwritten": len(self._unwritten)},
                ),
            )

        if self._writer is not None:
            await asyncio.to_thread(self._writer.close)

        stats = self.stats()
        logger.info(
            "Stopped raw data collection for session %s (events=%d segments=%d)",
            self._session_id,
            stats["total_events"],
            stats["segments_created"],
        )
        return stats

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def record_raw_event(self, layer: str, event_type: str, payload: Any) -> RawEvent | None:
        """Record an event verbatim. Never blocks on I/O and never filters content."""
        if not self._active:
            logger.warning("Raw data collector not active, skipping %s event", event_type)
            return None
        return self._record(layer, event_type, payload)

    def _record(self, layer: str, event_type: str, payload: Any) -> RawEvent:
        self._sequence += 1
        event = RawEvent(
            timestamp=self._clock(),
            layer=str(layer),
            event_type=str(event_type),
            payload=payload,
            session_id=self._session_id or "",
            sequence_id=self._sequence,
        )
        self._total_events += 1
        self._events_by_layer[event.layer] += 1
        self._events_by_type[event.event_type] += 1

        self._buffer.append(event)
        if len(self._buffer) >= self.max_buffer_events:
            self._force_flush()
        return event

    def _force_flush(self) -> None:
        """Hand the full buffer to the writer queue so the buffer stays bounded."""
        self._unwritten.extend(self._buffer)
        self._buffer = []
        self._forced_flushes += 1
        if self._flush_task is not None and not self._flush_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop yet; the next flush cycle writes the handed-off events
        self._flush_task = loop.create_task(self.flush())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def flush(self) -> int:
        """Write every queued event to the current segment, in buffer order.

        Returns the number of events persisted by this call.
        """
        async with self._lock:
            return await self._flush_locked()

    async def _flush_locked(self) -> int:
        if self._buffer:
            self._unwritten.extend(self._buffer)
            self._buffer = []
        if not self._unwritten or self._writer is None:
            return 0

        pending, self._unwritten = self._unwritten, []
        segment_before = self._writer.current_path
        try:
            written = await asyncio.to_thread(self._writer.append, pending)
        except SegmentWriteError as exc:
            self._requeue(pending, exc.written, exc)
            return exc.written
        except Exception as exc:  # Intentionally broad: events stay queued on any writer failure
            self._requeue(pending, 0, exc)
            return 0

        self._buffer_flushes += 1
        segment_after = self._writer.current_path
        if segment_after is not None and segment_after != segment_before:
            self._publish_rotation(segment_before, segment_after, "size")
        self.bus.publish(
            CHANNEL_BUFFER_FLUSHED,
            buffer_flushed_event(
                self._session_id or "",
                written,
                segment_after.name if segment_after else None,
            ),
        )
        logger.debug("Flushed %d raw events", written)
        return written

    def _requeue(self, pending: list[RawEvent], written: int, exc: Exception) -> None:
        """Keep the unwritten remainder ahead of anything queued meanwhile."""
        self._unwritten = pending[written:] + self._unwritten
        self._write_failures += 1
        logger.warning(
            "Raw log flush failed after %d/%d events, will retry next cycle: %s",
            written,
            len(pending),
            exc,
        )
        self.bus.publish(
            CHANNEL_ERROR,
            error_event(
                "raw_log",
                str(exc),
                {
                    "session_id": self._session_id,
                    "written": written,
                    "retrying": len(pending) - written,
                },
            ),
        )

    async def _flush_until_empty(self) -> None:
        for _ in range(STOP_FLUSH_ATTEMPTS):
            await self.flush()
            if not self._unwritten and not self._buffer:
                return

    async def rotate(self) -> Path | None:
        """Flush, then close the current segment and open a new one."""
        async with self._lock:
            await self._flush_locked()
            return await self._rotate_locked("manual")

    async def _rotate_for_age(self) -> None:
        async with self._lock:
            await self._flush_locked()
            writer = self._writer
            if writer is None or not writer.has_events() or writer.opened_at is None:
                return
            if (utc_now() - writer.opened_at).total_seconds() >= self.segment_max_age_seconds:
                await self._rotate_locked("max_age")

    async def _rotate_locked(self, reason: str) -> Path | None:
        if self._writer is None:
            return None
        try:
            old, new = await asyncio.to_thread(self._writer.rotate)
        except OSError as exc:
            logger.warning("Segment rotation failed: %s", exc)
            self.bus.publish(
                CHANNEL_ERROR,
                error_event("raw_log", f"Segment rotation failed: {exc}", {"reason": reason}),
            )
            return None
        self._publish_rotation(old, new, reason)
        return new

    def _publish_rotation(self, old: Path | None, new: Path, reason: str) -> None:
        self.bus.publish(
            CHANNEL_SEGMENT_ROTATED,
            segment_rotated_event(
                self._session_id or "",
                old.name if old else None,
                new.name,
                reason,
            ),
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)

    @property
    def pending_count(self) -> int:
        """Events recorded but not yet persisted (buffered plus awaiting retry)."""
        return len(self._buffer) + len(self._unwritten)

    def recent_events(self, limit: int = 100) -> list[RawEvent]:
        return list(self._buffer[-limit:])

    def stats(self) -> dict[str, Any]:
        writer = self._writer
        return {
            "session_id": self._session_id,
            "total_events": self._total_events,
            "events_by_layer": dict(self._events_by_layer),
            "events_by_type": dict(self._events_by_type),
            "segments_created": writer.segments_created if writer else 0,
            "bytes_written": writer.bytes_written if writer else 0,
            "events_written": writer.events_written if writer else 0,
            "buffer_flushes": self._buffer_flushes,
            "forced_flushes": self._forced_flushes,
            "write_failures": self._write_failures,
            "current_buffer_size": len(self._buffer),
            "unwritten_events": len(self._unwritten),
            "current_segment_bytes": writer.current_size if writer else 0,
            "is_active": self._active,
        }

    def _reset_stats(self) -> None:
        self._total_events = 0
        self._events_by_layer: Counter[str] = Counter()
        self._events_by_type: Counter[str] = Counter()
        self._buffer_flushes = 0
        self._forced_flushes = 0
        self._write_failures = 0
