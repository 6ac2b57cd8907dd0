"""Exception hierarchy shared by the codec, reader, and supervisor."""

from __future__ import annotations

from typing import Any


class ProcwireError(Exception):
    """Base class for every error raised by procwire."""


class EncodeError(ProcwireError):
    """Raised when a value has no wire representation."""


class DecodeError(ProcwireError):
    """Raised when a frame's content is not a valid encoded value."""


class ProtocolError(ProcwireError):
    """Raised when the worker stream carries a bad token or an error event.

    ``payload`` holds the elements that followed the ``error`` tag of an
    explicit error event; for stream corruption it holds the raw detail.
    """

    def __init__(self, detail: str, payload: tuple[Any, ...] = ()) -> None:
        super().__init__(detail)
        self.detail = detail
        self.payload = payload

    @classmethod
    def from_event(cls, payload: tuple[Any, ...]) -> ProtocolError:
        """Build the error raised for an ``("error", ...)`` message."""
        if payload:
            detail = "Worker signalled an error: " + ", ".join(
                repr(item) for item in payload
            )
        else:
            detail = "Worker signalled an error"
        return cls(detail, payload)


class WorkerNotRunning(ProcwireError):
    """Raised when sending to a worker that is not in the running state."""


class InvalidEntryPoint(ProcwireError):
    """Raised at spawn time for an entry point the worker cannot call."""


class BufferReleasedError(ProcwireError):
    """Raised when feeding a receive buffer that has been released."""
