"""Interval summary scheduler.

Accumulates normalized events and per-application focus time for one
session. Every ``interval_seconds`` a tick snapshots the accumulated window
into an IntervalSummaryRequest, publishes it on
``interval-summary-requested`` and starts a new window. App-usage totals are
not reset by a tick; they run for the whole session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from activity_tracker.chunking.chunker import event_details, event_timestamp, event_type, resolve_app
from activity_tracker.errors import SchedulerStateError
from activity_tracker.events.schema import IntervalSummaryRequest, utc_now
from activity_tracker.events.signals import (
    CHANNEL_ERROR,
    CHANNEL_INTERVAL_SUMMARY_REQUESTED,
    SignalBus,
    error_event,
)
from activity_tracker.timers import PeriodicTimer

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 15 * 60
DEFAULT_MAX_EVENTS = 1000

_FOCUS_TYPES = {"application_change", "app_focus"}
_KEYSTROKE_TYPES = {"keystroke", "key_press"}
_CLICK_TYPES = {"mouse_click", "click"}


class IntervalSummaryScheduler:
    """Periodic summarization requests over a session's activity."""

    def __init__(
        self,
        bus: SignalBus | None = None,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_events: int = DEFAULT_MAX_EVENTS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if max_events < 2:
            raise ValueError("max_events must be at least 2")
        self.bus = bus or SignalBus()
        self.interval_seconds = interval_seconds
        self.max_events = max_events
        self._clock = clock
        self._timer: PeriodicTimer | None = None
        self._reset_session("")
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def chunk_number(self) -> int:
        return self._chunk_number

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def accumulated_events(self) -> list[Any]:
        return list(self._events)

    @property
    def app_usage_seconds(self) -> dict[str, float]:
        """Running per-application totals, excluding the in-progress focus."""
        return dict(self._app_usage)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(self, session_id: str) -> None:
        """Reset all accumulators and arm the interval timer.

        The timer is armed only when called with a running event loop;
        otherwise ticks are driven by explicit ``tick()`` calls.

        Raises:
            SchedulerStateError: a session is already active; end it first.
        """
        if self._active:
            raise SchedulerStateError(f"Summary session {self._session_id} is still active")
        self._reset_session(session_id)
        self._active = True
        self._arm_timer()
        logger.info(
            "Interval summaries started for session %s (interval=%ds)",
            session_id,
            self.interval_seconds,
        )

    async def end_session(self) -> None:
        """Disarm the timer and mark the session inactive.

        A trailing partial summary must be requested before this call.
        """
        if not self._active:
            logger.warning("No active summary session to end")
            return
        await self._disarm_timer()
        self._active = False
        logger.info(
            "Interval summaries ended for session %s (%d requests)",
            self._session_id,
            self._chunk_number,
        )

    async def set_interval(self, seconds: float) -> None:
        """Change the period. Accumulated, not yet summarized data is kept."""
        if seconds <= 0:
            raise ValueError("interval must be positive")
        self.interval_seconds = seconds
        if self._timer is not None:
            await self._disarm_timer()
            self._arm_timer()
        logger.info("Interval summary period set to %ss", seconds)

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def process_event(self, event: Any) -> None:
        if not self._active:
            return

        self._events.append(event)
        kind = event_type(event)
        details = event_details(event)

        if kind in _FOCUS_TYPES and details.get("action") != "blur":
            self._switch_app(resolve_app(event), event_timestamp(event))
        elif kind in _KEYSTROKE_TYPES and details.get("action") != "release":
            self._keystrokes += 1
        elif kind in _CLICK_TYPES and details.get("action") != "release":
            self._clicks += 1

        if len(self._events) > self.max_events:
            keep = self.max_events // 2
            dropped = len(self._events) - keep
            self._events = self._events[-keep:]
            self._dropped += dropped
            logger.warning(
                "Interval accumulator over %d events, discarded %d oldest",
                self.max_events,
                dropped,
            )

    def _switch_app(self, app: str | None, at: datetime) -> None:
        if self._current_app is not None and self._app_since is not None:
            elapsed = max((at - self._app_since).total_seconds(), 0.0)
            self._app_usage[self._current_app] = self._app_usage.get(self._current_app, 0.0) + elapsed
        self._current_app = app
        self._app_since = at

    def app_usage_snapshot(self, now: datetime | None = None) -> dict[str, float]:
        """Totals including the current application's in-progress time."""
        usage = dict(self._app_usage)
        if self._current_app is not None and self._app_since is not None:
            elapsed = max(((now or self._clock()) - self._app_since).total_seconds(), 0.0)
            usage[self._current_app] = usage.get(self._current_app, 0.0) + elapsed
        return usage

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def tick(self) -> IntervalSummaryRequest | None:
        """Close the current interval and emit its request."""
        return self._emit(is_final=False)

    def request_partial_summary(self) -> IntervalSummaryRequest | None:
        """Emit the trailing partial interval; call before ``end_session``."""
        return self._emit(is_final=True)

    def _emit(self, is_final: bool) -> IntervalSummaryRequest | None:
        if not self._active:
            logger.warning("Summary session not active, skipping interval request")
            return None
        try:
            now = self._clock()
            request = IntervalSummaryRequest(
                session_id=self._session_id,
                chunk_number=self._chunk_number + 1,
                window_start=self._window_start,
                window_end=now,
                events=tuple(self._events),
                app_usage_seconds=self.app_usage_snapshot(now),
                keystroke_count=self._keystrokes,
                click_count=self._clicks,
                dropped_events=self._dropped,
                is_final=is_final,
            )
            self._chunk_number = request.chunk_number
            self._reset_window(now)
        except Exception as exc:  # Intentionally broad: next interval must still fire
            logger.exception("Failed to build interval summary request")
            self.bus.publish(CHANNEL_ERROR, error_event("summary_scheduler", str(exc)))
            return None

        logger.info(
            "Interval summary %d requested (%d events, final=%s)",
            request.chunk_number,
            len(request.events),
            is_final,
        )
        self.bus.publish(CHANNEL_INTERVAL_SUMMARY_REQUESTED, request)
        return request

    def stats(self) -> dict[str, Any]:
        return {
            "session_id": self._session_id,
            "is_active": self._active,
            "chunk_number": self._chunk_number,
            "accumulated_events": len(self._events),
            "dropped_events": self._dropped,
            "current_app": self._current_app,
            "interval_seconds": self.interval_seconds,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reset_session(self, session_id: str) -> None:
        self._session_id = session_id
        self._chunk_number = 0
        self._app_usage: dict[str, float] = {}
        self._current_app: str | None = None
        self._app_since: datetime | None = None
        self._reset_window(self._clock())

    def _reset_window(self, now: datetime) -> None:
        self._window_start = now
        self._events: list[Any] = []
        self._keystrokes = 0
        self._clicks = 0
        self._dropped = 0

    def _arm_timer(self) -> None:
        timer = PeriodicTimer("interval-summary", self.interval_seconds, self.tick)
        try:
            timer.start()
        except RuntimeError:
            logger.debug("No running event loop, interval ticks are manual")
            return
        self._timer = timer

    async def _disarm_timer(self) -> None:
        if self._timer is not None:
            timer, self._timer = self._timer, None
            await timer.stop()
