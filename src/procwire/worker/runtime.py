"""Worker-side runtime — the code that runs inside every worker process.

The host writes one bootstrap frame naming the entry point.  The worker
reads it, answers with the ``("ready", pid)`` handshake, and runs the
entry point.  Entry points talk back with :func:`send_value` and read
further host messages with :func:`read_value`.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, BinaryIO

from procwire.codec import decode
from procwire.constants import ERROR_TAG, FRAME_DELIMITER, READY_TAG
from procwire.errors import DecodeError, InvalidEntryPoint
from procwire.protocol.framing import frame
from procwire.worker.entry import (
    EntryPoint,
    close_transport,
    load_entry_point,
    open_transport,
    resolve_import_path,
)

logger = logging.getLogger(__name__)

#: Exit status when the bootstrap frame is missing or unusable.
EXIT_BAD_BOOTSTRAP = 2

#: Exit status when the entry point raised.
EXIT_ENTRY_FAILED = 1

# Binary stdout captured at startup, before the entry point can replace
# sys.stdout.
_channel: BinaryIO | None = None


def read_value(stream: BinaryIO | None = None) -> Any:
    """Block until one complete line arrives on stdin and decode it.

    Raises:
        EOFError: stdin was closed before a line arrived.
        DecodeError: the line is not a valid frame.
    """
    if stream is None:
        stream = sys.stdin.buffer
    line = stream.readline()
    if not line:
        msg = "stdin closed before a value arrived"
        raise EOFError(msg)

    block = line.strip()
    if (
        len(block) >= 2
        and block.startswith(FRAME_DELIMITER)
        and block.endswith(FRAME_DELIMITER)
    ):
        block = block[1:-1]
    return decode(block)


def send_value(value: Any, stream: BinaryIO | None = None) -> None:
    """Write one frame for *value* to the host and flush."""
    if stream is None:
        stream = _channel if _channel is not None else sys.stdout.buffer
    stream.write(frame(value))
    stream.flush()


def send_error(*payload: Any, stream: BinaryIO | None = None) -> None:
    """Signal a protocol-level error to the host."""
    send_value((ERROR_TAG, *payload), stream=stream)


def main() -> int:
    """Run one worker: bootstrap, handshake, entry point."""
    global _channel
    _channel = sys.stdout.buffer

    logging.basicConfig(
        stream=sys.stderr,
        level=os.environ.get("PROCWIRE_LOG_LEVEL", "WARNING").upper(),
        format="%(levelname)s [worker %(process)d] %(name)s: %(message)s",
    )

    try:
        bootstrap = read_value()
    except EOFError:
        logger.error("No bootstrap frame received")
        return EXIT_BAD_BOOTSTRAP
    except DecodeError as exc:
        send_error("DecodeError", f"Bad bootstrap frame: {exc}")
        return EXIT_BAD_BOOTSTRAP

    if not isinstance(bootstrap, dict) or not isinstance(bootstrap.get("entry"), str):
        send_error("InvalidEntryPoint", f"Bad bootstrap value: {bootstrap!r}")
        return EXIT_BAD_BOOTSTRAP

    try:
        entry = load_entry_point(bootstrap["entry"])
    except InvalidEntryPoint as exc:
        send_error("InvalidEntryPoint", str(exc))
        return EXIT_BAD_BOOTSTRAP

    stdout = sys.stdout
    if bootstrap.get("isolate_stdout"):
        sys.stdout = sys.stderr

    send_value((READY_TAG, os.getpid()))

    try:
        _run(entry, bootstrap.get("transport"))
    except Exception as exc:
        logger.exception("Entry point %s raised", entry.path)
        send_error(type(exc).__name__, str(exc))
        return EXIT_ENTRY_FAILED
    finally:
        sys.stdout = stdout
    return 0


def _run(entry: EntryPoint, transport_path: str | None) -> None:
    target = resolve_import_path(entry.path)
    if not entry.wants_transport:
        target()
        return

    if transport_path is None:
        msg = f"Entry point '{entry.path}' takes a transport but none is configured"
        raise InvalidEntryPoint(msg)

    transport = open_transport(transport_path)
    try:
        target(transport)
    finally:
        close_transport(transport)
