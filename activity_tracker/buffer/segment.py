"""Append-only raw log segments.

A segment is a JSON-lines file: one ``#``-prefixed header line recording the
session id, start time and format version, followed by one serialized
RawEvent per line in arrival order. The writer is synchronous and is driven
from the collector through ``asyncio.to_thread``; it never runs concurrently
with itself.
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from activity_tracker.errors import SegmentWriteError
from activity_tracker.events.schema import LOG_FORMAT_VERSION, RawEvent, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

HEADER_PREFIX = "#"
SEGMENT_GLOB = "raw_*.jsonl"
_SEGMENT_NAME = re.compile(r"^raw_(?P<session>.+)_(?P<index>\d{5})_(?P<stamp>\d{8}T\d{12}Z)\.jsonl$")


def segment_filename(session_id: str, index: int, started_at: datetime) -> str:
    stamp = started_at.strftime("%Y%m%dT%H%M%S%fZ")
    return f"raw_{session_id}_{index:05d}_{stamp}.jsonl"


class SegmentWriter:
    """Writes one session's raw events into a chain of rotating segments."""

    def __init__(
        self,
        directory: str | Path,
        session_id: str,
        max_bytes: int,
        fsync: bool = False,
    ) -> None:
        self.directory = Path(directory).expanduser()
        self.session_id = session_id
        self.max_bytes = max_bytes
        self.fsync = fsync
        self._file: Any = None
        self._path: Path | None = None
        self._size = 0
        self._header_size = 0
        self._events_in_segment = 0
        self._next_index = 0
        self.segments_created = 0
        self.bytes_written = 0
        self.events_written = 0
        self.opened_at: datetime | None = None

    @property
    def current_path(self) -> Path | None:
        """Path of the current (or last closed) segment."""
        return self._path

    @property
    def current_size(self) -> int:
        return self._size

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self) -> Path:
        """Create the log directory and the first segment."""
        self.directory.mkdir(parents=True, exist_ok=True)
        return self._open_new_segment()

    def append(self, events: Sequence[RawEvent]) -> int:
        """Append events in order, rotating by size before a write would overflow.

        Raises:
            SegmentWriteError: a write failed; ``written`` events reached disk.
        """
        written = 0
        for event in events:
            try:
                data = event.to_line()
                if self._file is None:
                    self._open_new_segment()
                elif self._size + len(data) > self.max_bytes and self._events_in_segment > 0:
                    self.rotate()
                self._write_all(data)
            except (OSError, ValueError) as exc:
                self._abandon()
                raise SegmentWriteError(
                    f"Failed to append to segment {self._path}: {exc}", written=written
                ) from exc
            self._size += len(data)
            self._events_in_segment += 1
            self.bytes_written += len(data)
            self.events_written += 1
            written += 1

        if self.fsync and self._file is not None and written:
            try:
                os.fsync(self._file.fileno())
            except OSError as exc:
                logger.warning("fsync failed for %s: %s", self._path, exc)
        return written

    def rotate(self) -> tuple[Path | None, Path]:
        """Close the current segment and open the next one. Returns (old, new)."""
        old = self._path
        self._close_file()
        new = self._open_new_segment()
        logger.info("Rotated raw log segment %s -> %s", old.name if old else None, new.name)
        return old, new

    def has_events(self) -> bool:
        return self._events_in_segment > 0

    def close(self) -> None:
        """Close the current segment; it stays readable on disk."""
        self._close_file()

    def _open_new_segment(self) -> Path:
        started_at = utc_now()
        index = self._next_index
        path = self.directory / segment_filename(self.session_id, index, started_at)
        header = {
            "format_version": LOG_FORMAT_VERSION,
            "session_id": self.session_id,
            "segment_index": index,
            "started_at": started_at.isoformat(),
            "format": "jsonl",
        }
        data = f"{HEADER_PREFIX} {json.dumps(header)}\n".encode("utf-8")
        handle = open(path, "ab", buffering=0)
        try:
            self._file = handle
            self._write_all(data)
        except OSError:
            handle.close()
            self._file = None
            raise
        self._path = path
        self._next_index = index + 1
        self._size = self._header_size = len(data)
        self._events_in_segment = 0
        self.opened_at = started_at
        self.segments_created += 1
        self.bytes_written += len(data)
        logger.info("Created raw log segment %s", path.name)
        return path

    def _write_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            count = self._file.write(view)
            view = view[count:]

    def _close_file(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            finally:
                self._file = None

    def _abandon(self) -> None:
        """Drop a failed file handle; the next append starts a fresh segment."""
        try:
            self._close_file()
        except OSError:
            logger.warning("Failed to close segment %s after write error", self._path)


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------


@dataclass
class SegmentContents:
    """Parsed contents of one segment file."""

    path: Path
    header: dict[str, Any] = field(default_factory=dict)
    events: list[RawEvent] = field(default_factory=list)
    skipped_lines: int = 0


def read_segment(path: str | Path) -> SegmentContents:
    """Read a segment file. Unparseable lines are skipped and counted."""
    path = Path(path)
    contents = SegmentContents(path=path)
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            if line.startswith(HEADER_PREFIX):
                if not contents.header:
                    try:
                        contents.header = json.loads(line[len(HEADER_PREFIX):].strip())
                    except json.JSONDecodeError:
                        logger.warning("Invalid segment header in %s", path.name)
                continue
            try:
                contents.events.append(RawEvent.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                contents.skipped_lines += 1
                logger.warning("Skipping unparseable line in %s: %s", path.name, line[:100])
    return contents


def list_segments(directory: str | Path, session_id: str | None = None) -> list[Path]:
    """List segment files, ordered by session id and segment index."""
    directory = Path(directory).expanduser()
    if not directory.is_dir():
        return []
    found: list[tuple[str, int, Path]] = []
    for path in directory.glob(SEGMENT_GLOB):
        match = _SEGMENT_NAME.match(path.name)
        if not match:
            continue
        if session_id is not None and match.group("session") != session_id:
            continue
        found.append((match.group("session"), int(match.group("index")), path))
    found.sort(key=lambda item: (item[0], item[1]))
    return [path for _, _, path in found]


def iter_session_events(directory: str | Path, session_id: str) -> Iterator[RawEvent]:
    """Yield a session's events from all its segments in arrival order."""
    for path in list_segments(directory, session_id):
        yield from read_segment(path).events


def search_events(
    directory: str | Path,
    *,
    layer: str | None = None,
    event_type: str | None = None,
    session_id: str | None = None,
    start: datetime | str | None = None,
    end: datetime | str | None = None,
) -> list[RawEvent]:
    """Find logged events matching every given criterion, sorted by time then sequence."""
    start_dt = parse_timestamp(start) if start is not None else None
    end_dt = parse_timestamp(end) if end is not None else None
    matches: list[RawEvent] = []
    for path in list_segments(directory, session_id):
        for event in read_segment(path).events:
            if layer and event.layer != layer:
                continue
            if event_type and event.event_type != event_type:
                continue
            if start_dt and event.timestamp < start_dt:
                continue
            if end_dt and event.timestamp > end_dt:
                continue
            matches.append(event)
    matches.sort(key=lambda e: (e.timestamp, e.sequence_id))
    return matches


def cleanup_old_segments(
    directory: str | Path,
    retention_days: int,
    now: datetime | None = None,
) -> int:
    """Delete segment files last modified before the retention window. Returns count deleted."""
    cutoff = (now or utc_now()) - timedelta(days=retention_days)
    deleted = 0
    for path in list_segments(directory):
        try:
            mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=cutoff.tzinfo)
            if mtime < cutoff:
                path.unlink()
                deleted += 1
                logger.info("Deleted expired raw log segment %s", path.name)
        except OSError as exc:
            logger.warning("Could not clean up segment %s: %s", path.name, exc)
    return deleted
