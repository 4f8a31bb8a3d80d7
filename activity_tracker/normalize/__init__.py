"""Raw event to canonical event normalization."""

from activity_tracker.normalize.normalizer import EVENT_TYPE_MAP, normalize

__all__ = ["EVENT_TYPE_MAP", "normalize"]
