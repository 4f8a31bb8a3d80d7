"""Periodic timer used by every pipeline component.

Each timer is an asyncio task that sleeps on a stop event with a timeout and
invokes its callback when the timeout elapses. ``stop()`` sets the event and
awaits the task, so an in-flight callback completes and no callback fires
after ``stop()`` returns.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[Any] | Any]


class PeriodicTimer:
    """Repeating timer. Callback failures are logged and the timer keeps running."""

    def __init__(self, name: str, interval_seconds: float, callback: TimerCallback) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"Timer interval must be positive, got {interval_seconds}")
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._fire_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def fire_count(self) -> int:
        return self._fire_count

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"timer:{self.name}")

    async def stop(self) -> None:
        """Stop the timer and wait for any in-flight callback to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        task, self._task = self._task, None
        await task

    async def _run(self) -> None:
        logger.debug("Timer %s started (interval=%.3fs)", self.name, self.interval_seconds)
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                break  # stop requested
            except asyncio.TimeoutError:
                pass  # normal interval elapsed
            await self._fire()
        logger.debug("Timer %s stopped after %d firings", self.name, self._fire_count)

    async def _fire(self) -> None:
        self._fire_count += 1
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except Exception:  # Intentionally broad: timer loop
            logger.exception("Timer %s callback failed", self.name)
