"""Pydantic v2 models for trace events."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class _EventBase(BaseModel):
    """Common envelope fields shared by every trace event."""

    model_config = ConfigDict(extra="forbid")

    ts: str = Field(description="ISO 8601 timestamp with milliseconds")
    seq: int = Field(ge=0, description="Monotonic sequence number")


class TraceStartEvent(_EventBase):
    """Emitted once when a trace file is opened."""

    type: Literal["trace_start"] = "trace_start"
    trace_id: str = Field(description="Unique trace identifier")
    label: str = Field(description="Trace label")


class TraceEndEvent(_EventBase):
    """Emitted once when a trace file is closed."""

    type: Literal["trace_end"] = "trace_end"
    duration_ms: int = Field(description="Total trace duration in milliseconds")


class WorkerSpawnEvent(_EventBase):
    """A worker process was created."""

    type: Literal["worker_spawn"] = "worker_spawn"
    worker: str = Field(description="Worker name")
    pid: int = Field(description="Worker process id")
    entry: str = Field(description="Entry point import path")


class TransitionEvent(_EventBase):
    """A worker moved to a new state."""

    type: Literal["transition"] = "transition"
    worker: str = Field(description="Worker name")
    state: str = Field(description="New state label")
    returncode: int | None = Field(
        default=None,
        description="Process exit status for terminal states",
    )


class MessageEvent(_EventBase):
    """A message crossed the pipe in either direction."""

    type: Literal["message"] = "message"
    worker: str = Field(description="Worker name")
    direction: Literal["in", "out"] = Field(
        description="'out' for host to worker, 'in' for worker to host",
    )
    value: str = Field(description="Printed form of the value (truncated)")


class ProtocolErrorEvent(_EventBase):
    """A protocol error was raised while reading worker output."""

    type: Literal["protocol_error"] = "protocol_error"
    worker: str = Field(description="Worker name")
    detail: str = Field(description="Error description")
    payload: list[str] = Field(
        default_factory=list,
        description="Printed error payload elements",
    )


def _event_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


TraceEvent = Annotated[
    Annotated[TraceStartEvent, Tag("trace_start")]
    | Annotated[TraceEndEvent, Tag("trace_end")]
    | Annotated[WorkerSpawnEvent, Tag("worker_spawn")]
    | Annotated[TransitionEvent, Tag("transition")]
    | Annotated[MessageEvent, Tag("message")]
    | Annotated[ProtocolErrorEvent, Tag("protocol_error")],
    Discriminator(_event_discriminator),
]
"""Discriminated union of all trace event types."""
