"""Trace recording — event models and JSONL recorder."""

from procwire.trace.models import (
    MessageEvent,
    ProtocolErrorEvent,
    TraceEndEvent,
    TraceEvent,
    TraceStartEvent,
    TransitionEvent,
    WorkerSpawnEvent,
)
from procwire.trace.recorder import TraceRecorder

__all__ = [
    "MessageEvent",
    "ProtocolErrorEvent",
    "TraceEndEvent",
    "TraceEvent",
    "TraceRecorder",
    "TraceStartEvent",
    "TransitionEvent",
    "WorkerSpawnEvent",
]
