"""Batch former: groups normalized events into bounded batches.

A batch opens on its first event and is flushed by whichever trigger comes
first: size (``max_events``), age (``max_age_seconds``, checked on every
``add_event`` and by a one-shot timer) or the idle timer
(``idle_flush_seconds``). Both timers are armed when the batch opens; with
the default thresholds the idle timer always fires before the age timer.
Flushed batches are immutable and are published on ``batch-created``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Callable
from datetime import datetime
from typing import Any

from activity_tracker.events.schema import Batch, FlushReason, NormalizedEvent, utc_now
from activity_tracker.events.signals import CHANNEL_BATCH_CREATED, SignalBus

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 100
DEFAULT_MAX_AGE_SECONDS = 30.0
DEFAULT_IDLE_FLUSH_SECONDS = 10.0
DEFAULT_HISTORY_SIZE = 100


class BatchFormer:
    """Accumulates normalized events into one open batch at a time."""

    def __init__(
        self,
        bus: SignalBus | None = None,
        *,
        max_events: int = DEFAULT_MAX_EVENTS,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        idle_flush_seconds: float = DEFAULT_IDLE_FLUSH_SECONDS,
        history_size: int = DEFAULT_HISTORY_SIZE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_events < 1:
            raise ValueError("max_events must be at least 1")
        if history_size < 1:
            raise ValueError("history_size must be at least 1")
        self.bus = bus or SignalBus()
        self.max_events = max_events
        self.max_age_seconds = max_age_seconds
        self.idle_flush_seconds = idle_flush_seconds
        self._clock = clock

        self._session_id = ""
        self._active = False
        self._events: list[NormalizedEvent] = []
        self._opened_at: datetime | None = None
        self._timers: list[asyncio.TimerHandle] = []
        self._batch_number = 0
        self._total_events = 0
        self._history: deque[Batch] = deque(maxlen=history_size)

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def open_batch_size(self) -> int:
        return len(self._events)

    @property
    def batch_count(self) -> int:
        return self._batch_number

    @property
    def last_batch(self) -> Batch | None:
        return self._history[-1] if self._history else None

    def recent_batches(self, limit: int = 10) -> list[Batch]:
        """The most recent flushed batches, oldest first. Only the last ``history_size`` are kept."""
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def start(self, session_id: str) -> None:
        self._cancel_timers()
        self._session_id = session_id
        self._events = []
        self._opened_at = None
        self._batch_number = 0
        self._total_events = 0
        self._history.clear()
        self._active = True
        logger.info(
            "Batch former started (max_events=%d max_age=%.1fs idle=%.1fs)",
            self.max_events,
            self.max_age_seconds,
            self.idle_flush_seconds,
        )

    def stop(self) -> Batch | None:
        """Cancel timers and flush whatever is still open."""
        batch = self.force_flush()
        self._active = False
        logger.info("Batch former stopped (%d batches)", self._batch_number)
        return batch

    def add_event(self, event: NormalizedEvent) -> Batch | None:
        """Append to the open batch. Returns the batch if this event closed it."""
        if not self._active:
            logger.debug("Batch former not active, ignoring event %s", event.id)
            return None

        if not self._events:
            self._opened_at = self._clock()
            self._arm_timers()
        self._events.append(event)
        self._total_events += 1

        if len(self._events) >= self.max_events:
            return self.flush(FlushReason.SIZE)
        if self._age_seconds() >= self.max_age_seconds:
            return self.flush(FlushReason.MAX_AGE)
        return None

    def force_flush(self) -> Batch | None:
        return self.flush(FlushReason.FORCED)

    def flush(self, reason: FlushReason) -> Batch | None:
        """Close the open batch and publish it. Never emits an empty batch."""
        self._cancel_timers()
        if not self._events:
            return None

        closed_at = self._clock()
        self._batch_number += 1
        batch = Batch(
            id=str(uuid.uuid4()),
            session_id=self._session_id,
            batch_number=self._batch_number,
            events=tuple(self._events),
            opened_at=self._opened_at or closed_at,
            closed_at=closed_at,
            reason=reason,
        )
        self._events = []
        self._opened_at = None
        self._history.append(batch)

        logger.info(
            "Batch %d flushed (%d events, reason=%s)",
            batch.batch_number,
            batch.size,
            reason,
        )
        self.bus.publish(CHANNEL_BATCH_CREATED, batch)
        return batch

    def stats(self) -> dict[str, Any]:
        return {
            "session_id": self._session_id,
            "total_events": self._total_events,
            "batches_flushed": self._batch_number,
            "open_batch_size": len(self._events),
            "open_batch_age_seconds": self._age_seconds() if self._events else 0.0,
            "batches_in_memory": len(self._history),
            "is_active": self._active,
        }

    def _age_seconds(self) -> float:
        if self._opened_at is None:
            return 0.0
        return (self._clock() - self._opened_at).total_seconds()

    def _arm_timers(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: size and age checks in add_event still apply
        self._timers = [
            loop.call_later(self.idle_flush_seconds, self.flush, FlushReason.IDLE),
            loop.call_later(self.max_age_seconds, self.flush, FlushReason.MAX_AGE),
        ]

    def _cancel_timers(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers = []
