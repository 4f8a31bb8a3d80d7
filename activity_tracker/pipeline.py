"""Session pipeline: wires the collector, normalizer, batch former, scheduler and chunker.

Every raw event is recorded by the collector first; normalization, batching
and interval accumulation happen afterwards, so a failure on the derived
path never affects the raw log. All state belongs to one TrackerPipeline
instance; independent sessions use independent pipelines.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from activity_tracker.batching.former import BatchFormer
from activity_tracker.buffer.collector import RawEventCollector
from activity_tracker.chunking.chunker import ActivityChunker
from activity_tracker.chunking.hints import HintClassifier
from activity_tracker.config.settings import TrackerSettings, get_settings
from activity_tracker.errors import CollectorStateError
from activity_tracker.events.schema import ActivityChunk, IntervalSummaryRequest, RawEvent, utc_now
from activity_tracker.events.signals import (
    CHANNEL_CHUNK_SET_PRODUCED,
    CHANNEL_ERROR,
    CHANNEL_INTERVAL_SUMMARY_REQUESTED,
    SignalBus,
    error_event,
)
from activity_tracker.normalize.normalizer import normalize
from activity_tracker.summary.scheduler import IntervalSummaryScheduler

logger = logging.getLogger(__name__)


class TrackerPipeline:
    """One tracking session's ingestion, persistence, batching and chunking."""

    def __init__(
        self,
        settings: TrackerSettings | None = None,
        bus: SignalBus | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or get_settings()
        self.bus = bus or SignalBus()
        s = self.settings

        self.collector = RawEventCollector(
            s.log_dir,
            self.bus,
            flush_interval_seconds=s.buffer_flush_interval_seconds,
            max_buffer_events=s.max_buffer_events,
            segment_max_bytes=s.segment_max_bytes,
            segment_max_age_seconds=s.segment_max_age_seconds,
            fsync=s.fsync_on_flush,
            clock=clock,
        )
        self.batch_former = BatchFormer(
            self.bus,
            max_events=s.batch_max_events,
            max_age_seconds=s.batch_max_age_seconds,
            idle_flush_seconds=s.batch_idle_flush_seconds,
            history_size=s.batch_history_size,
            clock=clock,
        )
        self.scheduler = IntervalSummaryScheduler(
            self.bus,
            interval_seconds=s.interval_summary_seconds,
            max_events=s.accumulator_max_events,
            clock=clock,
        )
        classifier = HintClassifier.from_yaml(s.hint_rules_path) if s.hint_rules_path else HintClassifier()
        self.chunker = ActivityChunker(
            gap_seconds=s.chunk_gap_seconds,
            clipboard_max_length=s.clipboard_max_length,
            classifier=classifier,
        )
        self._session_id: str | None = None
        self._derived_failures = 0
        self._unsubscribe = self.bus.subscribe(CHANNEL_INTERVAL_SUMMARY_REQUESTED, self._on_interval_request)

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def is_active(self) -> bool:
        return self.collector.is_active

    async def start(self, session_id: str | None = None) -> str:
        """Start a session; every component's state is reset."""
        if self.collector.is_active:
            raise CollectorStateError(f"Pipeline already running session {self._session_id}")
        session_id = session_id or str(uuid.uuid4())
        self._session_id = session_id
        self._derived_failures = 0

        await self.collector.start(session_id)
        self.batch_former.start(session_id)
        self.scheduler.start_session(session_id)
        logger.info("Tracker pipeline started (session=%s)", session_id)
        return session_id

    def record_raw_event(self, layer: str, event_type: str, payload: Any) -> RawEvent | None:
        """Capture-source entry point. Records first, then feeds the derived path."""
        event = self.collector.record_raw_event(layer, event_type, payload)
        if event is None:
            return None
        try:
            normalized = normalize(event)
            self.batch_former.add_event(normalized)
            self.scheduler.process_event(normalized)
        except Exception as exc:  # Intentionally broad: raw path already succeeded
            self._derived_failures += 1
            logger.warning("Derived processing failed for event %d: %s", event.sequence_id, exc)
            self.bus.publish(
                CHANNEL_ERROR,
                error_event("pipeline", str(exc), {"sequence_id": event.sequence_id}),
            )
        return event

    def produce_chunks(self, events: Iterable[Any] | None = None) -> list[ActivityChunk]:
        """Chunk events (default: the current interval's) and publish the chunk set."""
        source = list(events) if events is not None else self.scheduler.accumulated_events
        try:
            chunks = self.chunker.chunk(source)
        except Exception as exc:  # Intentionally broad: chunking is advisory
            logger.warning("Chunking %d events failed: %s", len(source), exc)
            self.bus.publish(CHANNEL_ERROR, error_event("chunker", str(exc), {"events": len(source)}))
            return []
        self.bus.publish(CHANNEL_CHUNK_SET_PRODUCED, chunks)
        return chunks

    def _on_interval_request(self, request: IntervalSummaryRequest) -> None:
        if request.session_id == self._session_id and request.events:
            self.produce_chunks(request.events)

    async def stop(self) -> dict[str, Any]:
        """Flush every stage and stop all timers. Nothing fires after this returns."""
        if not self.collector.is_active:
            return self.stats()

        self.scheduler.request_partial_summary()
        self.batch_former.stop()
        await self.scheduler.end_session()
        await self.collector.stop()
        await self.bus.drain()

        stats = self.stats()
        logger.info(
            "Tracker pipeline stopped (session=%s raw=%d batches=%d summaries=%d)",
            self._session_id,
            stats["collector"]["total_events"],
            stats["batching"]["batches_flushed"],
            stats["summary"]["chunk_number"],
        )
        return stats

    def close(self) -> None:
        """Drop the interval subscription; call once the pipeline will not be started again."""
        self._unsubscribe()

    def stats(self) -> dict[str, Any]:
        return {
            "session_id": self._session_id,
            "collector": self.collector.stats(),
            "batching": self.batch_former.stats(),
            "summary": self.scheduler.stats(),
            "derived_failures": self._derived_failures,
        }
