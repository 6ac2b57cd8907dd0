"""Wire protocol — framing, incremental reading, and dispatch."""

from procwire.protocol.dispatch import Dispatcher, is_error_event
from procwire.protocol.framing import FrameWriter, frame
from procwire.protocol.reader import ReceiveBuffer, feed

__all__ = [
    "Dispatcher",
    "FrameWriter",
    "ReceiveBuffer",
    "feed",
    "frame",
    "is_error_event",
]
