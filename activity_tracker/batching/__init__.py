"""Size, age and idle driven batching of normalized events."""

from activity_tracker.batching.former import BatchFormer

__all__ = ["BatchFormer"]
