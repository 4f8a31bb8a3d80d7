"""Periodic interval summary requests."""

from activity_tracker.summary.scheduler import IntervalSummaryScheduler

__all__ = ["IntervalSummaryScheduler"]
