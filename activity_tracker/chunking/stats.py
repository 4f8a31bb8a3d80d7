"""Chunk set statistics and the JSON document handed to summarizers."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from activity_tracker.events.schema import ActivityChunk, utc_now


@dataclass
class ChunkStats:
    total_chunks: int
    total_events: int
    unique_apps: int
    unique_urls: int
    apps_used: list[str] = field(default_factory=list)
    start: datetime | None = None
    end: datetime | None = None

    @property
    def duration_minutes(self) -> int | None:
        if self.start is None or self.end is None:
            return None
        return round((self.end - self.start).total_seconds() / 60)

    def to_dict(self) -> dict[str, Any]:
        time_span = None
        if self.start is not None and self.end is not None:
            time_span = {
                "start": self.start.isoformat(),
                "end": self.end.isoformat(),
                "duration_minutes": self.duration_minutes,
            }
        return {
            "total_chunks": self.total_chunks,
            "total_events": self.total_events,
            "unique_apps": self.unique_apps,
            "unique_urls": self.unique_urls,
            "apps_used": list(self.apps_used),
            "time_span": time_span,
        }


def chunk_stats(chunks: Sequence[ActivityChunk]) -> ChunkStats:
    apps = list(dict.fromkeys(c.primary_app for c in chunks))
    urls = {url for c in chunks for url in c.highlights.clicked_urls}
    return ChunkStats(
        total_chunks=len(chunks),
        total_events=sum(c.event_count for c in chunks),
        unique_apps=len(apps),
        unique_urls=len(urls),
        apps_used=apps,
        start=chunks[0].start if chunks else None,
        end=chunks[-1].end if chunks else None,
    )


def format_chunks_for_ai(chunks: Sequence[ActivityChunk], generated_at: datetime | None = None) -> str:
    """Render chunks as an indented JSON document with a metadata header."""
    time_span = None
    if chunks:
        time_span = {"start": chunks[0].start.isoformat(), "end": chunks[-1].end.isoformat()}
    document = {
        "metadata": {
            "total_chunks": len(chunks),
            "total_events": sum(c.event_count for c in chunks),
            "time_span": time_span,
            "generated_at": (generated_at or utc_now()).isoformat(),
        },
        "activity_chunks": [c.to_dict() for c in chunks],
    }
    return json.dumps(document, indent=2, default=str, ensure_ascii=False)
