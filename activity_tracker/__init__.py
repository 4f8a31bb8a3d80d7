"""Activity tracker core: raw capture, durable log, batching and activity chunking."""

__version__ = "0.3.0"
