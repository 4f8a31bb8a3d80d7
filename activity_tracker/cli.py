"""Command-line entry points.

Usage::

    python -m activity_tracker run
    python -m activity_tracker chunks <log-dir> [--session ID]
    python -m activity_tracker cleanup <log-dir> [--retention-days N]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from activity_tracker.buffer.segment import cleanup_old_segments, list_segments, read_segment
from activity_tracker.chunking.chunker import ActivityChunker
from activity_tracker.chunking.hints import HintClassifier
from activity_tracker.chunking.stats import format_chunks_for_ai
from activity_tracker.config.settings import TrackerSettings, get_settings
from activity_tracker.events.schema import SESSION_END, SESSION_START
from activity_tracker.health.reporter import HealthReporter
from activity_tracker.ipc.socket_server import SocketServer
from activity_tracker.pipeline import TrackerPipeline
from activity_tracker.upload.batch_forwarder import BatchForwarder

logger = logging.getLogger("activity_tracker")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_MARKERS = {SESSION_START, SESSION_END}


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="activity_tracker",
        description="Raw activity capture, durable logging and activity chunking.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from settings).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the capture pipeline and IPC server.")
    run.add_argument("--session", default=None, help="Session id (default: random UUID).")

    chunks = sub.add_parser("chunks", help="Chunk logged events and print them as JSON.")
    chunks.add_argument("log_dir", type=Path, help="Directory of raw log segments.")
    chunks.add_argument("--session", default=None, help="Only this session's segments.")

    cleanup = sub.add_parser("cleanup", help="Delete expired raw log segments.")
    cleanup.add_argument("log_dir", type=Path, help="Directory of raw log segments.")
    cleanup.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Keep segments modified within this many days (default: from settings).",
    )
    return parser.parse_args(argv)


async def _run(settings: TrackerSettings, session_id: str | None) -> int:
    """Start all tracker services and run until SIGINT/SIGTERM."""
    shutdown_event = asyncio.Event()

    def handle_signal() -> None:
        logger.info("Shutdown signal received")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal)

    pipeline = TrackerPipeline(settings)
    await pipeline.start(session_id)

    server = SocketServer(pipeline.record_raw_event, settings.socket_path)
    health = HealthReporter(pipeline.stats, interval_seconds=settings.health_interval_seconds)
    services = [server.serve(shutdown_event), health.run(shutdown_event)]
    forwarder = None
    if settings.forward_url:
        forwarder = BatchForwarder(settings.forward_url, timeout=settings.forward_timeout_seconds)
        forwarder.attach(pipeline.bus)
        services.append(forwarder.run(shutdown_event))

    logger.info("Activity tracker starting (session=%s log_dir=%s)", pipeline.session_id, settings.log_dir)
    try:
        await asyncio.gather(*services)
    except Exception:
        logger.exception("Service error")
        return 1
    finally:
        await _shutdown(pipeline, forwarder)
        logger.info("Activity tracker stopped")
    return 0


async def _shutdown(pipeline: TrackerPipeline, forwarder: BatchForwarder | None) -> None:
    """Stop the pipeline, then forward the batches its final flush produced."""
    await pipeline.stop()
    pipeline.close()
    if forwarder is not None:
        await forwarder.drain()


def _chunks(settings: TrackerSettings, log_dir: Path, session_id: str | None) -> int:
    segments = list_segments(log_dir, session_id)
    if not segments:
        print(f"No raw log segments found in {log_dir}", file=sys.stderr)
        return 1
    events = [
        event
        for path in segments
        for event in read_segment(path).events
        if event.event_type not in _MARKERS
    ]
    classifier = HintClassifier.from_yaml(settings.hint_rules_path) if settings.hint_rules_path else None
    chunker = ActivityChunker(
        gap_seconds=settings.chunk_gap_seconds,
        clipboard_max_length=settings.clipboard_max_length,
        classifier=classifier,
    )
    print(format_chunks_for_ai(chunker.chunk(events)))
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = _parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=args.log_level or settings.log_level_number,
        format=LOG_FORMAT,
    )

    if args.command == "run":
        return asyncio.run(_run(settings, args.session))
    if args.command == "chunks":
        return _chunks(settings, args.log_dir, args.session)

    retention = args.retention_days or settings.segment_retention_days
    deleted = cleanup_old_segments(args.log_dir, retention)
    print(f"Deleted {deleted} segment(s) older than {retention} days from {args.log_dir}")
    return 0
