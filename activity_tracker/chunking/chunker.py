"""Activity chunker: partitions a finite event sequence into activity chunks.

Boundaries are inferred heuristically, first matching rule wins:

1. the gap since the previous event exceeds ``gap_seconds``;
2. the resolved application differs from the previous event's;
3. both events carry a URL and the URLs differ;
4. both events carry a window title and the titles differ;
5. a navigation event points at a URL not yet seen in the current chunk.

Chunking is pure and deterministic: every input event lands in exactly one
chunk, in sorted order, and chunking the same input twice gives the same
chunks.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from activity_tracker.chunking.hints import HintClassifier
from activity_tracker.events.schema import (
    ActivityChunk,
    Highlights,
    NormalizedEvent,
    RawEvent,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
DEFAULT_GAP_SECONDS = 10.0
DEFAULT_CLIPBOARD_MAX_LENGTH = 500

CLIPBOARD_TYPES = frozenset({"clipboard_change"})
TEXT_INPUT_TYPES = frozenset({"text_input"})
CLICK_TYPES = frozenset({"element_click", "dom_click"})
NAVIGATION_TYPES = frozenset({"page_view", "url_navigation", "dom_navigation"})


# ---------------------------------------------------------------------------
# Field resolution across RawEvent, NormalizedEvent and exported mappings
# ---------------------------------------------------------------------------


def event_type(event: Any) -> str:
    if isinstance(event, RawEvent):
        return event.event_type
    if isinstance(event, NormalizedEvent):
        return event.canonical_type
    if isinstance(event, Mapping):
        return str(event.get("type") or event.get("event_type") or "unknown")
    return "unknown"


def event_timestamp(event: Any) -> datetime:
    if isinstance(event, (RawEvent, NormalizedEvent)):
        return event.timestamp
    if isinstance(event, Mapping) and event.get("timestamp") is not None:
        return parse_timestamp(event["timestamp"])
    raise ValueError(f"Event has no timestamp: {event!r:.100}")


def event_sequence(event: Any) -> int:
    if isinstance(event, RawEvent):
        return event.sequence_id
    if isinstance(event, NormalizedEvent):
        return event.sequence
    if isinstance(event, Mapping):
        value = event.get("sequence_id", event.get("sequence", 0))
        return value if isinstance(value, int) else 0
    return 0


def event_details(event: Any) -> Mapping[str, Any]:
    """The payload (raw) or metadata (normalized/exported) of an event."""
    if isinstance(event, RawEvent):
        details = event.payload
    elif isinstance(event, NormalizedEvent):
        details = event.metadata
    elif isinstance(event, Mapping):
        details = event.get("metadata")
        if details is None:
            details = event.get("payload")
    else:
        details = None
    return details if isinstance(details, Mapping) else {}


def _top_level(event: Any) -> Mapping[str, Any]:
    return event if isinstance(event, Mapping) else {}


def _first_str(*values: Any) -> str | None:
    for value in values:
        if isinstance(value, str) and value:
            return value
    return None


def resolve_app(event: Any) -> str | None:
    details = event_details(event)
    application = details.get("application")
    app_obj_name = application.get("name") if isinstance(application, Mapping) else None
    top = _top_level(event)
    return _first_str(
        details.get("app_name"),
        details.get("app"),
        app_obj_name,
        details.get("application_name"),
        top.get("app_name"),
        top.get("app"),
        top.get("application_name"),
    )


def resolve_url(event: Any) -> str | None:
    return _first_str(event_details(event).get("url"), _top_level(event).get("url"))


def resolve_window_title(event: Any) -> str | None:
    details = event_details(event)
    top = _top_level(event)
    return _first_str(
        details.get("window_title"),
        details.get("title"),
        top.get("window_title"),
        top.get("title"),
    )


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------


class ActivityChunker:
    """Heuristic activity segmentation with per-chunk highlights and hints."""

    def __init__(
        self,
        gap_seconds: float = DEFAULT_GAP_SECONDS,
        clipboard_max_length: int = DEFAULT_CLIPBOARD_MAX_LENGTH,
        classifier: HintClassifier | None = None,
    ) -> None:
        self.gap_seconds = gap_seconds
        self.clipboard_max_length = clipboard_max_length
        self.classifier = classifier or HintClassifier()

    def chunk(self, events: Iterable[Any]) -> list[ActivityChunk]:
        """Partition events into activity chunks. Empty input yields []."""
        ordered = sort_events(events)
        if not ordered:
            return []

        chunks: list[ActivityChunk] = []
        current: list[Any] = []
        previous: Any = None
        for event in ordered:
            if current and self.boundary_reason(previous, event, current) is not None:
                chunks.append(self.build_chunk(current))
                current = []
            current.append(event)
            previous = event
        chunks.append(self.build_chunk(current))

        logger.debug("Chunked %d events into %d chunks", len(ordered), len(chunks))
        return chunks

    def boundary_reason(self, previous: Any, event: Any, current: Sequence[Any]) -> str | None:
        """Name of the first boundary rule that fires, or None to continue the chunk."""
        gap = (event_timestamp(event) - event_timestamp(previous)).total_seconds()
        if gap > self.gap_seconds:
            return "gap"

        if resolve_app(previous) != resolve_app(event):
            return "app"

        prev_url, url = resolve_url(previous), resolve_url(event)
        if prev_url and url and prev_url != url:
            return "url"

        prev_title, title = resolve_window_title(previous), resolve_window_title(event)
        if prev_title and title and prev_title != title:
            return "window"

        if event_type(event) in NAVIGATION_TYPES and url:
            if url not in {resolve_url(e) for e in current}:
                return "navigation"
        return None

    def build_chunk(self, events: Sequence[Any]) -> ActivityChunk:
        if not events:
            raise ValueError("Cannot build a chunk from no events")

        apps = Counter(app for app in map(resolve_app, events) if app)
        primary_app = apps.most_common(1)[0][0] if apps else UNKNOWN
        window_title = _last_known(events, resolve_window_title) or UNKNOWN
        primary_url = _last_known(events, resolve_url) or UNKNOWN
        highlights = self.extract_highlights(events)

        return ActivityChunk(
            start=event_timestamp(events[0]),
            end=event_timestamp(events[-1]),
            primary_app=primary_app,
            window_title=window_title,
            primary_url=primary_url,
            events=list(events),
            highlights=highlights,
            summary_hint=self.classifier.hint(primary_app, window_title, primary_url, highlights),
        )

    def extract_highlights(self, events: Iterable[Any]) -> Highlights:
        highlights = Highlights()
        for event in events:
            kind = event_type(event)
            details = event_details(event)

            if kind in CLIPBOARD_TYPES:
                content = details.get("content")
                if isinstance(content, str):
                    content = content.strip()
                    if 0 < len(content) < self.clipboard_max_length:
                        _add_unique(highlights.clipboard_texts, content)

            elif kind in TEXT_INPUT_TYPES:
                text = details.get("text")
                if isinstance(text, str) and text.strip():
                    highlights.input_texts.append(text.strip())

            elif kind in CLICK_TYPES:
                for url in (resolve_url(event), _first_str(details.get("href"))):
                    if url:
                        _add_unique(highlights.clicked_urls, url)

            elif kind in NAVIGATION_TYPES:
                url = resolve_url(event)
                if url:
                    _add_unique(highlights.clicked_urls, url)
        return highlights


def sort_events(events: Iterable[Any]) -> list[Any]:
    """Order by timestamp, then sequence id, then input position."""
    indexed = list(enumerate(events))
    indexed.sort(key=lambda pair: (event_timestamp(pair[1]), event_sequence(pair[1]), pair[0]))
    return [event for _, event in indexed]


def chunk_events(events: Iterable[Any], **options: Any) -> list[ActivityChunk]:
    """Chunk events with a one-off ActivityChunker built from options."""
    return ActivityChunker(**options).chunk(events)


def _last_known(events: Sequence[Any], resolver: Callable[[Any], str | None]) -> str | None:
    for event in reversed(events):
        value = resolver(event)
        if value:
            return value
    return None


def _add_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)
