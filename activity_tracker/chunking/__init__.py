"""Heuristic activity chunking, summary hints and chunk statistics."""

from activity_tracker.chunking.chunker import ActivityChunker, chunk_events
from activity_tracker.chunking.hints import HintClassifier, HintRule
from activity_tracker.chunking.stats import ChunkStats, chunk_stats, format_chunks_for_ai

__all__ = [
    "ActivityChunker",
    "ChunkStats",
    "HintClassifier",
    "HintRule",
    "chunk_events",
    "chunk_stats",
    "format_chunks_for_ai",
]
