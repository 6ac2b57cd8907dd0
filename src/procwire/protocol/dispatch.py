"""Dispatcher — routes decoded worker messages to the registered filter."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from typing import TYPE_CHECKING, Any

from procwire.constants import ERROR_TAG
from procwire.errors import ProtocolError
from procwire.protocol.reader import ReceiveBuffer, feed

if TYPE_CHECKING:
    from procwire.worker.supervisor import WorkerHandler

logger = logging.getLogger(__name__)


def is_error_event(value: Any) -> bool:
    """True when *value* is a sequence tagged with the reserved error tag."""
    return (
        isinstance(value, (list, tuple))
        and len(value) > 0
        and isinstance(value[0], str)
        and value[0] == ERROR_TAG
    )


class Dispatcher:
    """Delivers one worker's messages, in order, to its handler.

    Error events raise :class:`ProtocolError` instead of reaching the
    filter.  Messages are dropped silently when no filter is registered.
    *control* sees every non-error message first; a message it returns
    ``True`` for is consumed by the caller and never reaches the filter.
    """

    def __init__(
        self,
        handler: WorkerHandler,
        name: str = "worker",
        control: Callable[[Any], bool] | None = None,
    ) -> None:
        self._handler = handler
        self._name = name
        self._control = control
        self._delivered = 0

    @property
    def delivered(self) -> int:
        """Number of messages handed to the filter so far."""
        return self._delivered

    def dispatch(self, values: Iterable[Any]) -> int:
        """Dispatch *values* in order and return how many reached the filter.

        Stops at the first error event by raising ``ProtocolError``; values
        after it are not consumed.
        """
        count = 0
        for value in values:
            if is_error_event(value):
                raise ProtocolError.from_event(tuple(value[1:]))
            if self._control is not None and self._control(value):
                continue
            callback = self._handler.filter
            if callback is None:
                logger.debug("%s: no filter registered, dropping %r", self._name, value)
                continue
            callback(value)
            count += 1
            self._delivered += 1
        return count

    def deliver(self, buffer: ReceiveBuffer, chunk: bytes) -> int:
        """Feed *chunk* into *buffer* and dispatch every complete message.

        Messages left unread after an error stay buffered and are
        dispatched together with the next chunk.
        """
        values: Iterator[Any] = feed(buffer, chunk)
        try:
            return self.dispatch(values)
        finally:
            close = getattr(values, "close", None)
            if close is not None:
                close()
