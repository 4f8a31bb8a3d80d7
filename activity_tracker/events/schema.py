"""Event data model shared by every stage of the tracker pipeline.

RawEvent is the unfiltered record produced at ingestion; NormalizedEvent is
its canonical reshaping. Batches group normalized events, activity chunks
group raw (or normalized) events, and interval summary requests snapshot the
activity accumulated over one summary period.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

LOG_FORMAT_VERSION = "3.0.0"

SESSION_START = "session_start"
SESSION_END = "session_end"


class EventLayer(StrEnum):
    """Capture layers that emit raw events."""

    OS_HOOKS = "os_hooks"
    NETWORK = "network"
    DOM = "dom"
    ACCESSIBILITY = "accessibility"
    CONTENT = "content"
    SNAPSHOTS = "snapshots"
    IPC = "ipc"


class FlushReason(StrEnum):
    """Why a batch was closed."""

    SIZE = "size"
    MAX_AGE = "max_age"
    IDLE = "idle"
    FORCED = "forced"


@dataclass(frozen=True)
class RawEvent:
    """A capture-source signal recorded verbatim.

    ``sequence_id`` is assigned at ingestion and increases monotonically per
    session; it orders events that share a timestamp.
    """

    timestamp: datetime
    layer: str
    event_type: str
    payload: Any
    session_id: str
    sequence_id: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "layer": self.layer,
            "event_type": self.event_type,
            "payload": self.payload,
            "session_id": self.session_id,
            "sequence_id": self.sequence_id,
        }

    def to_json(self, ensure_ascii: bool = False) -> str:
        """Serialize to a single JSON line. Never fails on payload content."""
        data = self.to_dict()
        try:
            return json.dumps(data, default=str, ensure_ascii=ensure_ascii)
        except (TypeError, ValueError):
            # Circular or otherwise unencodable payloads are kept as their repr
            data["payload"] = repr(self.payload)
            return json.dumps(data, default=str, ensure_ascii=ensure_ascii)

    def to_line(self) -> bytes:
        """UTF-8 log line. Strings that are not valid Unicode (lone surrogates) are escaped."""
        try:
            return (self.to_json() + "\n").encode("utf-8")
        except UnicodeEncodeError:
            return (self.to_json(ensure_ascii=True) + "\n").encode("utf-8")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RawEvent:
        return cls(
            timestamp=parse_timestamp(data["timestamp"]),
            layer=data.get("layer", "unknown"),
            event_type=data.get("event_type", "unknown"),
            payload=data.get("payload"),
            session_id=data.get("session_id", ""),
            sequence_id=int(data.get("sequence_id", 0)),
        )


@dataclass(frozen=True)
class NormalizedEvent:
    """A raw event reshaped into canonical form. ``id`` is ``<session>_<sequence>``."""

    id: str
    canonical_type: str
    original_type: str
    timestamp: datetime
    session_id: str
    sequence: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.canonical_type,
            "original_type": self.original_type,
            "timestamp": self.timestamp.isoformat(),
            "session_id": self.session_id,
            "sequence": self.sequence,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class Batch:
    """An immutable, flushed group of normalized events."""

    id: str
    session_id: str
    batch_number: int
    events: tuple[NormalizedEvent, ...]
    opened_at: datetime
    closed_at: datetime
    reason: FlushReason

    @property
    def size(self) -> int:
        return len(self.events)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "batch_number": self.batch_number,
            "opened_at": self.opened_at.isoformat(),
            "closed_at": self.closed_at.isoformat(),
            "reason": str(self.reason),
            "event_count": self.size,
            "events": [e.to_dict() for e in self.events],
        }


@dataclass
class Highlights:
    """Salient content extracted from one activity chunk.

    Clipboard texts and clicked URLs are deduplicated in first-seen order;
    input texts keep every occurrence because repeated typing is meaningful.
    """

    clipboard_texts: list[str] = field(default_factory=list)
    input_texts: list[str] = field(default_factory=list)
    clicked_urls: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "clipboard_texts": list(self.clipboard_texts),
            "input_texts": list(self.input_texts),
            "clicked_urls": list(self.clicked_urls),
        }


@dataclass
class ActivityChunk:
    """A contiguous run of events inferred to be one user activity."""

    start: datetime
    end: datetime
    primary_app: str
    window_title: str
    primary_url: str
    events: list[Any]
    highlights: Highlights
    summary_hint: str

    @property
    def event_count(self) -> int:
        return len(self.events)

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "primary_app": self.primary_app,
            "window_title": self.window_title,
            "primary_url": self.primary_url,
            "event_count": self.event_count,
            "events": [event_to_dict(e) for e in self.events],
            "highlights": self.highlights.to_dict(),
            "summary_hint": self.summary_hint,
        }


@dataclass(frozen=True)
class IntervalSummaryRequest:
    """Snapshot of one summary interval, emitted for external summarization."""

    session_id: str
    chunk_number: int
    window_start: datetime
    window_end: datetime
    events: tuple[Any, ...]
    app_usage_seconds: dict[str, float]
    keystroke_count: int = 0
    click_count: int = 0
    dropped_events: int = 0
    is_final: bool = False

    @property
    def duration_seconds(self) -> float:
        return (self.window_end - self.window_start).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "chunk_number": self.chunk_number,
            "time_window": {
                "start": self.window_start.isoformat(),
                "end": self.window_end.isoformat(),
            },
            "events": [event_to_dict(e) for e in self.events],
            "app_usage_seconds": dict(self.app_usage_seconds),
            "keystroke_count": self.keystroke_count,
            "click_count": self.click_count,
            "dropped_events": self.dropped_events,
            "is_final": self.is_final,
        }


def event_to_dict(event: Any) -> Any:
    """Return the dict form of a RawEvent/NormalizedEvent, or the value as-is."""
    if isinstance(event, (RawEvent, NormalizedEvent)):
        return event.to_dict()
    return event


def parse_timestamp(ts: str | datetime | int | float) -> datetime:
    """Parse an ISO 8601 string, epoch seconds, or datetime into an aware UTC datetime."""
    if isinstance(ts, datetime):
        return ts if ts.tzinfo else ts.replace(tzinfo=UTC)
    if isinstance(ts, (int, float)):
        return datetime.fromtimestamp(ts, tz=UTC)
    # Handle Z suffix
    if ts.endswith("Z"):
        ts = ts[:-1] + "+00:00"
    parsed = datetime.fromisoformat(ts)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)
