"""Event model and signal bus."""

from activity_tracker.events.schema import (
    ActivityChunk,
    Batch,
    EventLayer,
    FlushReason,
    Highlights,
    IntervalSummaryRequest,
    NormalizedEvent,
    RawEvent,
)
from activity_tracker.events.signals import SignalBus

__all__ = [
    "ActivityChunk",
    "Batch",
    "EventLayer",
    "FlushReason",
    "Highlights",
    "IntervalSummaryRequest",
    "NormalizedEvent",
    "RawEvent",
    "SignalBus",
]
