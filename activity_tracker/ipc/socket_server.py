"""Unix domain socket server for capture sources.

Listens on a user-private Unix domain socket and reads newline-delimited
JSON messages. Every line becomes exactly one recorded raw event; lines that
fail to decode are recorded as ``malformed_message`` events rather than
discarded.
"""

from __future__ import annotations

import asyncio
import logging
import os
import stat
from collections.abc import Callable
from pathlib import Path
from typing import Any

from activity_tracker.ipc.protocol import CaptureMessage

logger = logging.getLogger(__name__)

Recorder = Callable[[str, str, Any], Any]


class SocketServer:
    """Async Unix domain socket server feeding ``record_raw_event``."""

    def __init__(self, recorder: Recorder, socket_path: str | Path) -> None:
        self.recorder = recorder
        self.socket_path = Path(socket_path).expanduser()
        self.started = asyncio.Event()
        self._message_count = 0
        self._client_count = 0

    @property
    def message_count(self) -> int:
        return self._message_count

    async def serve(self, shutdown_event: asyncio.Event) -> None:
        """Start the socket server and accept connections until shutdown."""
        # Socket directory is owner-only
        self.socket_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

        # Remove stale socket file
        if self.socket_path.exists():
            self.socket_path.unlink()

        server = await asyncio.start_unix_server(self._handle_client, path=str(self.socket_path))
        os.chmod(self.socket_path, stat.S_IRUSR | stat.S_IWUSR)  # 0o600
        logger.info("Socket server listening on %s", self.socket_path)
        self.started.set()

        try:
            await shutdown_event.wait()
        finally:
            server.close()
            await server.wait_closed()
            if self.socket_path.exists():
                self.socket_path.unlink()
            self.started.clear()
            logger.info(
                "Socket server stopped (clients=%d messages=%d)",
                self._client_count,
                self._message_count,
            )

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle a single capture source connection."""
        self._client_count += 1
        logger.info("Capture source connected")
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                if not line.strip():
                    continue
                self.handle_line(line)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Client handler error")
        finally:
            writer.close()
            logger.info("Capture source disconnected")

    def handle_line(self, line: bytes | str) -> Any:
        message = CaptureMessage.from_line(line)
        self._message_count += 1
        return self.recorder(message.layer, message.event_type, message.payload)
