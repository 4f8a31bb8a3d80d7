"""Batch forwarder: gzip-compressed batches POSTed with exponential backoff.

Subscribes to ``batch-created``, queues each batch and uploads it to
``url``. The raw log is the durable record; a batch that cannot be
forwarded is logged and dropped from the queue.
"""

from __future__ import annotations

import asyncio
import gzip
import hashlib
import json
import logging
from collections.abc import Callable
from typing import Any

import httpx

from activity_tracker.events.schema import Batch
from activity_tracker.events.signals import CHANNEL_BATCH_CREATED, SignalBus

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
BASE_BACKOFF_SECONDS = 2.0
QUEUE_SIZE = 1000


class BatchForwarder:
    """Forwards flushed batches to an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = 30.0,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = BASE_BACKOFF_SECONDS,
        queue_size: int = QUEUE_SIZE,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._client = client
        self._queue: asyncio.Queue[Batch] = asyncio.Queue(maxsize=queue_size)
        self._forwarded = 0
        self._failed = 0

    @property
    def forwarded_count(self) -> int:
        return self._forwarded

    @property
    def failed_count(self) -> int:
        return self._failed

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    def attach(self, bus: SignalBus) -> Callable[[], None]:
        return bus.subscribe(CHANNEL_BATCH_CREATED, self.enqueue)

    def enqueue(self, batch: Batch) -> None:
        try:
            self._queue.put_nowait(batch)
        except asyncio.QueueFull:
            self._failed += 1
            logger.warning("Forward queue full, batch %s not forwarded", batch.id[:8])

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Forward queued batches until shutdown, then drain the queue."""
        logger.info("Batch forwarder started (url=%s)", self.url)
        while not shutdown_event.is_set():
            try:
                batch = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            await self.forward(batch)
        await self.drain()
        logger.info(
            "Batch forwarder stopped (%d forwarded, %d failed)",
            self._forwarded,
            self._failed,
        )

    async def drain(self) -> None:
        while not self._queue.empty():
            await self.forward(self._queue.get_nowait())

    async def forward(self, batch: Batch) -> bool:
        """Upload a single batch with gzip compression and retry logic."""
        payload = json.dumps(batch.to_dict(), default=str).encode("utf-8")
        compressed = gzip.compress(payload)
        checksum = hashlib.sha256(payload).hexdigest()
        headers = {
            "Content-Type": "application/json",
            "Content-Encoding": "gzip",
            "X-Batch-Id": batch.id,
            "X-Checksum": checksum,
        }

        for attempt in range(self.max_retries):
            try:
                response = await self._post(compressed, headers)
                if response.status_code in (200, 201, 202):
                    self._forwarded += 1
                    logger.info("Batch %s forwarded (%d events)", batch.id[:8], batch.size)
                    return True
                elif response.status_code >= 500:
                    logger.warning(
                        "Server error %d for batch %s (attempt %d/%d)",
                        response.status_code,
                        batch.id[:8],
                        attempt + 1,
                        self.max_retries,
                    )
                else:
                    self._failed += 1
                    logger.error(
                        "Batch %s rejected: %d %s",
                        batch.id[:8],
                        response.status_code,
                        response.text[:200],
                    )
                    return False
            except httpx.HTTPError as e:
                logger.warning(
                    "Network error for batch %s (attempt %d/%d): %s",
                    batch.id[:8],
                    attempt + 1,
                    self.max_retries,
                    str(e),
                )

            if attempt + 1 < self.max_retries:
                # Exponential backoff: 2, 4, 8, 16 seconds
                await asyncio.sleep(self.backoff_base * (2**attempt))

        self._failed += 1
        logger.error("Batch %s failed after %d attempts", batch.id[:8], self.max_retries)
        return False

    async def _post(self, content: bytes, headers: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.url, content=content, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient() as client:
            return await client.post(self.url, content=content, headers=headers, timeout=self.timeout)

    def stats(self) -> dict[str, Any]:
        return {
            "forwarded": self._forwarded,
            "failed": self._failed,
            "queued": self._queue.qsize(),
        }
