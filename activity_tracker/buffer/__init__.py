"""Raw event buffer and durable, rotating log segments."""

from activity_tracker.buffer.collector import RawEventCollector
from activity_tracker.buffer.segment import (
    SegmentContents,
    SegmentWriter,
    cleanup_old_segments,
    iter_session_events,
    list_segments,
    read_segment,
    search_events,
)

__all__ = [
    "RawEventCollector",
    "SegmentContents",
    "SegmentWriter",
    "cleanup_old_segments",
    "iter_session_events",
    "list_segments",
    "read_segment",
    "search_events",
]
