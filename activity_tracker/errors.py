"""Exceptions raised by the activity tracker core."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for tracker errors."""


class CollectorStateError(TrackerError):
    """Raised when a collector lifecycle call does not match its state."""


class SegmentWriteError(TrackerError):
    """A log segment append failed part-way.

    ``written`` is the number of events from the failed call that reached
    the segment before the failure; callers retry only the remainder.
    """

    def __init__(self, message: str, written: int = 0) -> None:
        super().__init__(message)
        self.written = written


class HintRuleError(TrackerError):
    """Raised when a summary hint rule table cannot be loaded."""


class SchedulerStateError(TrackerError):
    """Raised when a summary session is started while one is already active."""
