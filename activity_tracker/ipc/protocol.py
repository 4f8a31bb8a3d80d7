"""Wire protocol for capture sources.

One JSON object per line: ``{"layer": ..., "event_type": ..., "payload": ...}``.
Anything else on the line is still captured as a ``malformed_message``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from activity_tracker.events.schema import EventLayer

MALFORMED_MESSAGE = "malformed_message"
UNKNOWN = "unknown"


@dataclass
class CaptureMessage:
    """A single raw event as sent by a capture source."""

    layer: str
    event_type: str
    payload: Any = None

    @classmethod
    def from_line(cls, line: bytes | str) -> CaptureMessage:
        """Decode one protocol line. Never raises."""
        text = line.decode("utf-8", errors="replace") if isinstance(line, bytes) else line
        text = text.strip()
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            return cls(layer=EventLayer.IPC, event_type=MALFORMED_MESSAGE, payload={"raw": text})
        return cls(
            layer=str(data.get("layer") or UNKNOWN),
            event_type=str(data.get("event_type") or UNKNOWN),
            payload=data.get("payload"),
        )

    def to_line(self) -> bytes:
        data = {"layer": str(self.layer), "event_type": self.event_type, "payload": self.payload}
        return (json.dumps(data, default=str) + "\n").encode("utf-8")
