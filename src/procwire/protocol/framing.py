"""Frame writer — delimits encoded values and writes them to a pipe."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from procwire.codec import encode
from procwire.constants import FRAME_DELIMITER, RECORD_TERMINATOR
from procwire.errors import WorkerNotRunning

logger = logging.getLogger(__name__)


def frame(value: Any) -> bytes:
    """Return the complete wire frame for *value*.

    Raises:
        EncodeError: *value* has no wire representation.
    """
    return FRAME_DELIMITER + encode(value) + FRAME_DELIMITER + RECORD_TERMINATOR


class FrameWriter:
    """Serializes frames onto a worker's stdin.

    Every frame is written and drained under one lock, so two concurrent
    ``send`` calls never interleave their bytes on the pipe.
    """

    def __init__(self, stdin: asyncio.StreamWriter, name: str = "worker") -> None:
        self._stdin = stdin
        self._name = name
        self._lock = asyncio.Lock()
        self._frames_sent = 0

    @property
    def frames_sent(self) -> int:
        """Number of frames fully written so far."""
        return self._frames_sent

    async def send(self, value: Any) -> int:
        """Write one frame for *value* and return its size in bytes.

        Encoding happens before the lock is taken, so a value that cannot
        be encoded never leaves a partial frame on the pipe.
        """
        data = frame(value)
        async with self._lock:
            try:
                self._stdin.write(data)
                await self._stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                msg = f"Cannot write to {self._name}: {exc}"
                raise WorkerNotRunning(msg) from exc
            self._frames_sent += 1
        logger.debug("%s: sent %d byte frame", self._name, len(data))
        return len(data)

    async def close(self) -> None:
        """Close the pipe so the worker sees EOF on stdin."""
        async with self._lock:
            if self._stdin.is_closing():
                return
            self._stdin.close()
            try:
                await self._stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                pass
