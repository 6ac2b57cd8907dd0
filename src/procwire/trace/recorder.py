"""Trace recorder — append-only JSONL writer for worker traffic."""

from __future__ import annotations

import re
import threading
import time
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, Any

from procwire.trace.models import (
    MessageEvent,
    ProtocolErrorEvent,
    TraceEndEvent,
    TraceEvent,
    TraceStartEvent,
    TransitionEvent,
    WorkerSpawnEvent,
)

#: Valid trace label pattern — alphanumeric, hyphens, underscores only.
_SAFE_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")

#: Maximum characters of a printed value stored per message event.
_MAX_VALUE_CHARS = 500


class TraceRecorder:
    """Records trace events to an append-only JSONL file.

    Thread-safe: all writes are serialized through a ``threading.Lock``.
    Crash-safe: the file is flushed after every event.
    """

    def __init__(self, label: str, traces_dir: Path | None = None) -> None:
        if not _SAFE_NAME_RE.match(label):
            msg = (
                f"Invalid trace label {label!r}: must contain only "
                "alphanumeric characters, hyphens, and underscores."
            )
            raise ValueError(msg)

        self._label = label
        self._lock = threading.Lock()
        self._seq = 0
        self._closed = False
        self._start_ns = time.monotonic_ns()
        self._trace_id = uuid.uuid4().hex[:12]

        if traces_dir is None:
            traces_dir = Path("traces")
        traces_dir.mkdir(parents=True, exist_ok=True)

        date_str = datetime.now(tz=UTC).strftime("%Y-%m-%d")
        self._trace_file = traces_dir / f"{date_str}_{label}_{self._trace_id}.jsonl"

        self._fh: IO[str] | None = None
        try:
            self._fh = self._trace_file.open("a", encoding="utf-8")
            self.record(
                TraceStartEvent(ts="", seq=0, trace_id=self._trace_id, label=label)
            )
        except Exception:
            self._close_handle()
            raise

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def trace_id(self) -> str:
        """Unique trace identifier (12-char hex)."""
        return self._trace_id

    @property
    def trace_file(self) -> Path:
        """Path to the JSONL file."""
        return self._trace_file

    @property
    def event_count(self) -> int:
        """Number of events recorded so far."""
        return self._seq

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, event: TraceEvent) -> None:
        """Write *event* to the JSONL file.

        Stamps ``ts`` and ``seq`` on every event, then flushes.
        Silently drops events after the recorder has been closed.
        """
        with self._lock:
            if self._closed or self._fh is None:
                return
            event.seq = self._seq
            event.ts = _iso_now()
            self._seq += 1
            self._fh.write(event.model_dump_json() + "\n")
            self._fh.flush()

    def spawned(self, worker: str, pid: int, entry: str) -> None:
        self.record(WorkerSpawnEvent(ts="", seq=0, worker=worker, pid=pid, entry=entry))

    def transition(self, worker: str, state: str, returncode: int | None) -> None:
        self.record(
            TransitionEvent(
                ts="", seq=0, worker=worker, state=state, returncode=returncode
            )
        )

    def message(self, worker: str, direction: str, value: Any) -> None:
        printed = repr(value)
        if len(printed) > _MAX_VALUE_CHARS:
            printed = printed[:_MAX_VALUE_CHARS] + "..."
        self.record(
            MessageEvent(
                ts="", seq=0, worker=worker, direction=direction, value=printed
            )
        )

    def protocol_error(self, worker: str, detail: str, payload: tuple[Any, ...]) -> None:
        self.record(
            ProtocolErrorEvent(
                ts="",
                seq=0,
                worker=worker,
                detail=detail,
                payload=[repr(item) for item in payload],
            )
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def end(self) -> None:
        """Write a ``trace_end`` event and close the file.

        Idempotent — calling ``end()`` on a closed recorder is a no-op.
        """
        if self._closed:
            return
        duration_ms = int((time.monotonic_ns() - self._start_ns) / 1_000_000)
        self.record(TraceEndEvent(ts="", seq=0, duration_ms=duration_ms))
        self.close()

    def close(self) -> None:
        """Close the file **without** writing a ``trace_end`` event."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._close_handle()

    def _close_handle(self) -> None:
        if self._fh is not None and not self._fh.closed:
            self._fh.close()


def _iso_now() -> str:
    """Return the current UTC time as ISO 8601 with milliseconds."""
    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
