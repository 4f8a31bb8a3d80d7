"""In-process publish/subscribe signals for pipeline consumers.

Each component publishes to a named channel; consumers (summarizers,
forwarders, dashboards) subscribe with a callback. Delivery is local to the
event loop: synchronous callbacks run inline, coroutine callbacks are
scheduled as tasks. A failing subscriber is logged and never affects the
publisher or the other subscribers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from activity_tracker.events.schema import utc_now

logger = logging.getLogger(__name__)

CHANNEL_BATCH_CREATED = "batch-created"
CHANNEL_CHUNK_SET_PRODUCED = "chunk-set-produced"
CHANNEL_INTERVAL_SUMMARY_REQUESTED = "interval-summary-requested"
CHANNEL_ERROR = "pipeline-error"
CHANNEL_BUFFER_FLUSHED = "buffer-flushed"
CHANNEL_SEGMENT_ROTATED = "segment-rotated"

Subscriber = Callable[[Any], Any]


class SignalBus:
    """Channel-based signal dispatcher owned by one pipeline session."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, channel: str, callback: Subscriber) -> Callable[[], None]:
        """Register a callback. Returns a function that removes it again."""
        self._subscribers[channel].append(callback)

        def unsubscribe() -> None:
            try:
                self._subscribers[channel].remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    def publish(self, channel: str, payload: Any) -> int:
        """Deliver payload to every subscriber of channel. Returns the count notified."""
        delivered = 0
        for callback in list(self._subscribers.get(channel, ())):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    self._track(channel, result)
                delivered += 1
            except Exception:  # Intentionally broad: subscriber isolation
                logger.exception("Subscriber failed on channel %s", channel)
        return delivered

    async def drain(self) -> None:
        """Wait for outstanding coroutine deliveries to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _track(self, channel: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(
                    "Async subscriber failed on channel %s: %s",
                    channel,
                    exc,
                    exc_info=exc,
                )

        task.add_done_callback(_done)


def error_event(
    component: str,
    message: str,
    detail: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Create a pipeline error event."""
    return {
        "event_type": "pipeline_error",
        "component": component,
        "message": message,
        "detail": detail or {},
        "timestamp": utc_now().isoformat(),
    }


def buffer_flushed_event(session_id: str, event_count: int, segment: str | None) -> dict[str, Any]:
    """Create a buffer flush completion event."""
    return {
        "event_type": "buffer_flushed",
        "session_id": session_id,
        "event_count": event_count,
        "segment": segment,
        "timestamp": utc_now().isoformat(),
    }


def segment_rotated_event(
    session_id: str,
    old_segment: str | None,
    new_segment: str,
    reason: str,
) -> dict[str, Any]:
    """Create a log segment rotation event."""
    return {
        "event_type": "segment_rotated",
        "session_id": session_id,
        "old_segment": old_segment,
        "new_segment": new_segment,
        "reason": reason,
        "timestamp": utc_now().isoformat(),
    }
