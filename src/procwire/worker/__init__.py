"""Worker processes — host-side supervisor and worker-side runtime."""

from procwire.worker.entry import EntryPoint, load_entry_point, set_default_transport
from procwire.worker.runtime import read_value, send_error, send_value
from procwire.worker.supervisor import Supervisor, Worker, WorkerHandler, WorkerState

__all__ = [
    "EntryPoint",
    "Supervisor",
    "Worker",
    "WorkerHandler",
    "WorkerState",
    "load_entry_point",
    "read_value",
    "send_error",
    "send_value",
    "set_default_transport",
]
