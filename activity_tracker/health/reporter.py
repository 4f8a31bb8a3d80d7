"""Health reporter: periodic CPU/memory self-monitoring.

Logs process CPU and RSS together with pipeline counters every
``interval_seconds``. Purely local; nothing is sent over the network.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import psutil

logger = logging.getLogger(__name__)

HEALTH_INTERVAL_SECONDS = 300  # 5 minutes
CPU_WARN_PERCENT = 3.0


@dataclass
class HealthMetrics:
    """Current tracker health metrics."""

    cpu_percent: float
    memory_mb: float
    pending_events: int
    total_events: int
    uptime_seconds: float


class HealthReporter:
    """Reports tracker process health to the log."""

    def __init__(
        self,
        stats_provider: Callable[[], dict[str, Any]] | None = None,
        interval_seconds: float = HEALTH_INTERVAL_SECONDS,
    ) -> None:
        self.stats_provider = stats_provider
        self.interval_seconds = interval_seconds
        self._start_time = time.time()
        self._process = psutil.Process()
        self._report_count = 0

    @property
    def report_count(self) -> int:
        return self._report_count

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Report periodically until shutdown."""
        logger.info("Health reporter started (interval=%ds)", self.interval_seconds)
        while not shutdown_event.is_set():
            self.report()
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
        logger.info("Health reporter stopped")

    def get_metrics(self) -> HealthMetrics:
        """Collect current health metrics."""
        cpu = self._process.cpu_percent(interval=None)
        memory = self._process.memory_info().rss / (1024 * 1024)
        stats = self.stats_provider() if self.stats_provider else {}
        collector = stats.get("collector", stats)
        return HealthMetrics(
            cpu_percent=cpu,
            memory_mb=round(memory, 1),
            pending_events=collector.get("current_buffer_size", 0) + collector.get("unwritten_events", 0),
            total_events=collector.get("total_events", 0),
            uptime_seconds=round(time.time() - self._start_time, 1),
        )

    def report(self) -> HealthMetrics | None:
        try:
            metrics = self.get_metrics()
        except psutil.Error as e:
            logger.warning("Health metrics unavailable: %s", str(e))
            return None
        self._report_count += 1
        logger.info(
            "Health: cpu=%.1f%% rss=%.1fMB events=%d pending=%d uptime=%.0fs",
            metrics.cpu_percent,
            metrics.memory_mb,
            metrics.total_events,
            metrics.pending_events,
            metrics.uptime_seconds,
        )
        if metrics.cpu_percent > CPU_WARN_PERCENT:
            logger.warning("CPU usage %.1f%% above %.1f%% budget", metrics.cpu_percent, CPU_WARN_PERCENT)
        return metrics
