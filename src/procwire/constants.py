"""Shared constants and type aliases for the procwire runtime."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

#: Reserved first element of an error event.
ERROR_TAG = "error"

#: Reserved first element of the worker's startup handshake.
READY_TAG = "ready"

#: Opens and closes every frame on the wire.
FRAME_DELIMITER = b'"'

#: Ends every frame on the wire.
RECORD_TERMINATOR = b"\n"

#: Module run as ``python -m`` inside every worker process.
WORKER_MODULE = "procwire.worker"

#: Callback type for decoded application messages.
FilterCallback = Callable[[Any], None]

#: Callback type for worker state transitions (worker, label).
SentinelCallback = Callable[[Any, str], None]
