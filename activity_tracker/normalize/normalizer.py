"""Event normalizer: maps capture-source event shapes onto canonical types.

``normalize`` is a pure function. The raw type is looked up in a static
table (unmapped types pass through unchanged) and the payload is reshaped
into canonical metadata. Every raw field is kept; canonical sub-objects are
added alongside, including an ``object`` guess (type and id) inferred from
the URL, application or window title. A payload that cannot be reshaped
falls back to a copy of itself so the event is never dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit

from activity_tracker.events.schema import NormalizedEvent, RawEvent

logger = logging.getLogger(__name__)

EVENT_TYPE_MAP: dict[str, str] = {
    "key_down": "keystroke",
    "key_up": "keystroke",
    "keydown": "keystroke",
    "keyup": "keystroke",
    "mouse_down": "mouse_click",
    "mouse_up": "mouse_click",
    "mousedown": "mouse_click",
    "mouseup": "mouse_click",
    "app_focus": "application_change",
    "app_blur": "application_change",
    "window_change": "window_change",
    "screen_content": "content_capture",
    "session_start": "session_control",
    "session_end": "session_control",
    "error": "system_error",
}

_KEY_EVENTS = {"key_down", "key_up", "keydown", "keyup"}
_MOUSE_EVENTS = {"mouse_down", "mouse_up", "mousedown", "mouseup"}
_FOCUS_EVENTS = {"app_focus", "app_blur"}

# macOS NSEvent modifier flag bits, in display order
_MODIFIER_FLAGS = (
    (0x100000, "command"),
    (0x080000, "option"),
    (0x040000, "control"),
    (0x020000, "shift"),
    (0x010000, "capslock"),
)

_MOUSE_BUTTONS = {0: "left", 1: "right", 2: "middle"}


def canonical_type(event_type: str) -> str:
    return EVENT_TYPE_MAP.get(event_type, event_type)


def normalize(event: RawEvent) -> NormalizedEvent:
    """Derive the canonical form of a raw event."""
    try:
        metadata = _reshape(event.event_type, event.payload)
    except Exception as exc:  # Intentionally broad: never drop an event
        logger.warning(
            "Normalization of %s event %d fell back to pass-through: %s",
            event.event_type,
            event.sequence_id,
            exc,
        )
        metadata = _payload_copy(event.payload)

    return NormalizedEvent(
        id=f"{event.session_id}_{event.sequence_id}",
        canonical_type=canonical_type(event.event_type),
        original_type=event.event_type,
        timestamp=event.timestamp,
        session_id=event.session_id,
        sequence=event.sequence_id,
        metadata=metadata,
    )


def parse_modifiers(flags: Any) -> list[str]:
    """Decode a modifier bitmask into key names. Unparseable flags yield []."""
    if not flags:
        return []
    try:
        value = int(flags)
    except (TypeError, ValueError):
        return []
    return [name for bit, name in _MODIFIER_FLAGS if value & bit]


def parse_mouse_button(button: Any) -> str:
    try:
        number = int(button)
    except (TypeError, ValueError):
        return f"button{button}"
    return _MOUSE_BUTTONS.get(number, f"button{number}")


def _payload_copy(payload: Any) -> dict[str, Any]:
    if isinstance(payload, Mapping):
        return dict(payload)
    return {"value": payload}


def infer_from_url(url: str) -> dict[str, str]:
    try:
        parts = urlsplit(url)
    except ValueError:
        return {"type": "Webpage", "id": url}
    host = parts.hostname or ""
    if "github.com" in host:
        return {"type": "Repository", "id": url.rstrip("/").split("/")[-1] or "unknown"}
    if "gmail.com" in host:
        return {"type": "Email", "id": url.split("/")[-1] or "unknown"}
    if not host:
        return {"type": "Webpage", "id": url}
    return {"type": "Webpage", "id": host + parts.path}


def infer_from_window_title(title: str) -> dict[str, str]:
    if "Visual Studio Code" in title:
        return {"type": "File", "id": title}
    if "Terminal" in title:
        return {"type": "Terminal", "id": "terminal"}
    return {"type": "Window", "id": title}


def infer_object(payload: Mapping[str, Any]) -> dict[str, str] | None:
    """Guess what the event acts on. A window title beats the app, which beats the URL.

    Returns None when the payload carries none of the three.
    """
    inferred = None
    url = payload.get("url")
    if isinstance(url, str) and url:
        inferred = infer_from_url(url)
    app = payload.get("app") or payload.get("app_name")
    if isinstance(app, str) and app:
        inferred = {"type": "Application", "id": app}
    title = payload.get("window_title") or payload.get("title") or payload.get("window")
    if isinstance(title, str) and title:
        inferred = infer_from_window_title(title)
    return inferred


def _reshape(event_type: str, payload: Any) -> dict[str, Any]:
    metadata = _payload_copy(payload)
    if not isinstance(payload, Mapping):
        return metadata

    if event_type in _KEY_EVENTS:
        metadata.update(
            action="press" if "down" in event_type else "release",
            key_code=payload.get("key_code"),
            character=payload.get("character"),
            modifiers=parse_modifiers(payload.get("modifiers")),
        )
    elif event_type in _MOUSE_EVENTS:
        metadata.update(
            action="press" if "down" in event_type else "release",
            position={"x": payload.get("x"), "y": payload.get("y")},
            button=parse_mouse_button(payload.get("button")),
        )
    elif event_type in _FOCUS_EVENTS:
        metadata.update(
            action="focus" if event_type == "app_focus" else "blur",
            application={
                "name": payload.get("app_name"),
                "bundle_id": payload.get("bundle_id"),
                "process_id": payload.get("process_id"),
            },
        )
    elif event_type == "window_change":
        metadata["window"] = {
            "title": payload.get("window_title"),
            "application": payload.get("app_name"),
        }
    elif event_type == "screen_content":
        metadata["content"] = {
            "text": payload.get("text_content"),
            "element_role": payload.get("element_role"),
            "application": payload.get("app_name"),
        }

    inferred = infer_object(payload)
    if inferred is not None:
        metadata.setdefault("object", inferred)
    return metadata
