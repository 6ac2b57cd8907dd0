"""procwire — structured messaging with worker processes over stdio."""

from procwire.codec import decode, encode
from procwire.errors import (
    BufferReleasedError,
    DecodeError,
    EncodeError,
    InvalidEntryPoint,
    ProcwireError,
    ProtocolError,
    WorkerNotRunning,
)
from procwire.protocol.reader import ReceiveBuffer, feed
from procwire.worker.supervisor import Supervisor, Worker, WorkerHandler, WorkerState

__version__ = "0.3.0"

__all__ = [
    "BufferReleasedError",
    "DecodeError",
    "EncodeError",
    "InvalidEntryPoint",
    "ProcwireError",
    "ProtocolError",
    "ReceiveBuffer",
    "Supervisor",
    "Worker",
    "WorkerHandler",
    "WorkerNotRunning",
    "WorkerState",
    "__version__",
    "decode",
    "encode",
    "feed",
]
