"""Incremental reader for the worker's output stream.

Output arrives in arbitrary chunks with no length prefix.  Each chunk is
appended to a :class:`ReceiveBuffer` and the buffer is then read value by
value with a small reader for Python literal syntax:

* a top-level quoted string is a frame and its content is handed to
  :func:`procwire.codec.decode`;
* a bracketed literal or a number is delivered as a raw value;
* a bare identifier is stray noise (e.g. a stray ``print``) and is dropped;
* whitespace, ``,``/``;`` separators and ``#`` comments are skipped.

A value cut off by the end of the data stays in the buffer until more bytes
arrive.  The buffer remembers how far that value has been scanned, so each
byte is looked at once however many chunks a value is split into.  A
malformed token is removed from the buffer and reported as a
:class:`ProtocolError`, so the next chunk starts from a clean position.
"""

from __future__ import annotations

import ast
import enum
import logging
import re
from collections.abc import Iterator
from typing import Any, NamedTuple

from procwire.codec import decode
from procwire.errors import BufferReleasedError, DecodeError, ProtocolError

logger = logging.getLogger(__name__)

_QUOTES = frozenset(b"\"'")
_OPENERS = {ord("("): ord(")"), ord("["): ord("]"), ord("{"): ord("}")}
_CLOSERS = frozenset(_OPENERS.values())
_BACKSLASH = ord("\\")
_HASH = ord("#")

#: First byte that is not whitespace or a separator.
_TOKEN_START = re.compile(rb"[^ \t\r\n\f\v,;]")
#: First byte that ends an atom.
_ATOM_END = re.compile(rb"[ \t\r\n\f\v,;\"'()\[\]{}#]")
#: Bytes that matter inside a bracketed literal.
_BRACKET_STOP = re.compile(rb"[\"'()\[\]{}#]")
#: Bytes that matter inside a string, per opening quote.
_STRING_STOP = {
    ord('"'): re.compile(rb'["\\\n]'),
    ord("'"): re.compile(rb"['\\\n]"),
}

_CONSTANTS = {"True": True, "False": False, "None": None}

#: Maximum characters of a bad token quoted back in error messages.
_PREVIEW_LEN = 80


class _Token(enum.Enum):
    FRAME = "frame"
    BRACKETED = "bracketed"
    ATOM = "atom"
    COMMENT = "comment"


class _Scan:
    """How far an incomplete token at the front of the buffer has been read."""

    __slots__ = ("token", "pos", "expected", "inside")

    def __init__(
        self,
        token: _Token,
        pos: int,
        expected: list[int] | None = None,
        inside: int | None = None,
    ) -> None:
        self.token = token
        self.pos = pos
        # Closers still owed by a bracketed literal, innermost last.
        self.expected = expected if expected is not None else []
        # Quote (or ``#``) of the string or comment the scan stopped in.
        self.inside = inside


class ReceiveBuffer:
    """Append-only byte accumulator holding not-yet-parsed worker output.

    Everything before the read position is dropped as soon as it has been
    parsed, so the buffer only ever holds the start of a future value.
    """

    def __init__(self, initial: bytes = b"") -> None:
        self._data = bytearray(initial)
        self._scan: _Scan | None = None
        self._released = False

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        state = "released" if self._released else f"{len(self._data)} bytes"
        return f"<ReceiveBuffer {state}>"

    @property
    def pending(self) -> bytes:
        """Copy of the unconsumed bytes."""
        return bytes(self._data)

    @property
    def released(self) -> bool:
        return self._released

    def extend(self, chunk: bytes) -> None:
        """Append *chunk* to the tail of the buffer."""
        if self._released:
            msg = "Cannot feed a released receive buffer"
            raise BufferReleasedError(msg)
        self._data.extend(chunk)

    def consume(self, count: int) -> None:
        """Drop the first *count* bytes and forget any partial scan."""
        self._scan = None
        if count > 0:
            del self._data[:count]

    def release(self) -> None:
        """Free the stored bytes; the buffer refuses input afterwards."""
        self._data = bytearray()
        self._scan = None
        self._released = True


class _Kind(enum.Enum):
    VALUE = "value"
    SYMBOL = "symbol"
    END = "end"
    INCOMPLETE = "incomplete"
    MALFORMED = "malformed"


class _Read(NamedTuple):
    """Outcome of reading one token starting at the front of the data."""

    kind: _Kind
    end: int = 0
    value: Any = None
    detail: str = ""


def feed(buffer: ReceiveBuffer, chunk: bytes) -> Iterator[Any]:
    """Append *chunk* to *buffer* and return an iterator of complete values.

    The chunk is stored immediately; parsing happens lazily as the iterator
    is consumed.  Values come out in stream order, each exactly once.
    Values left unread when the iterator is abandoned stay in the buffer
    for the next call.

    Raises:
        BufferReleasedError: *buffer* has been released.
        ProtocolError: (during iteration) a malformed token was found.  The
            token has already been removed from the buffer.
    """
    buffer.extend(chunk)
    return _read_values(buffer)


def _read_values(buffer: ReceiveBuffer) -> Iterator[Any]:
    while not buffer.released:
        outcome = _read_one(buffer)

        if outcome.kind is _Kind.INCOMPLETE:
            return

        buffer.consume(outcome.end)

        if outcome.kind is _Kind.END:
            return
        if outcome.kind is _Kind.MALFORMED:
            raise ProtocolError(outcome.detail)
        if outcome.kind is _Kind.SYMBOL:
            logger.debug("Dropping stray symbol %r", outcome.value)
            continue
        yield outcome.value


def _read_one(buffer: ReceiveBuffer) -> _Read:
    """Read the first value in *buffer*, resuming a partial scan if any."""
    data = buffer._data
    scan = buffer._scan
    buffer._scan = None
    pos = 0

    if scan is not None and scan.token is _Token.COMMENT:
        newline = data.find(b"\n", scan.pos)
        if newline < 0:
            scan.pos = len(data)
            return _suspend(buffer, 0, scan)
        pos = newline + 1
        scan = None

    if scan is None:
        while True:
            match = _TOKEN_START.search(data, pos)
            if match is None:
                return _Read(_Kind.END, len(data))
            pos = match.start()
            if data[pos] != _HASH:
                break
            newline = data.find(b"\n", pos)
            if newline < 0:
                return _suspend(buffer, pos, _Scan(_Token.COMMENT, len(data)))
            pos = newline + 1
        scan = _start_scan(data, pos)
        if scan is None:
            return _Read(
                _Kind.MALFORMED,
                pos + 1,
                detail=f"Unexpected {chr(data[pos])!r} at top level",
            )

    if scan.token is _Token.FRAME:
        outcome = _read_frame(data, pos, scan)
    elif scan.token is _Token.BRACKETED:
        outcome = _read_bracketed(data, pos, scan)
    else:
        outcome = _read_atom(data, pos, scan)
    if outcome is None:
        return _suspend(buffer, pos, scan)
    return outcome


def _start_scan(data: bytearray, start: int) -> _Scan | None:
    byte = data[start]
    if byte in _QUOTES:
        return _Scan(_Token.FRAME, start + 1)
    if byte in _OPENERS:
        return _Scan(_Token.BRACKETED, start + 1, [_OPENERS[byte]])
    if byte in _CLOSERS:
        return None
    return _Scan(_Token.ATOM, start)


def _suspend(buffer: ReceiveBuffer, start: int, scan: _Scan) -> _Read:
    """Drop what precedes the incomplete token and keep *scan* for later."""
    buffer.consume(start)
    scan.pos -= start
    buffer._scan = scan
    return _Read(_Kind.INCOMPLETE)


def _scan_string(data: bytearray, pos: int, quote: int) -> tuple[_Kind, int]:
    """Scan a string body from *pos* for its closing *quote*.

    Returns ``(VALUE, end)`` past the closing quote, ``(MALFORMED, end)``
    past a raw newline, or ``(INCOMPLETE, resume)`` where scanning stopped.
    """
    stop = _STRING_STOP[quote]
    size = len(data)
    while True:
        match = stop.search(data, pos)
        if match is None:
            return _Kind.INCOMPLETE, size
        pos = match.start()
        byte = data[pos]
        if byte == _BACKSLASH:
            if pos + 1 >= size:
                return _Kind.INCOMPLETE, pos
            pos += 2
        elif byte == quote:
            return _Kind.VALUE, pos + 1
        else:
            return _Kind.MALFORMED, pos + 1


def _unterminated(data: bytearray, start: int, end: int) -> _Read:
    return _Read(
        _Kind.MALFORMED,
        end,
        detail=f"Unterminated string {_preview(data[start : end - 1])}",
    )


def _read_frame(data: bytearray, start: int, scan: _Scan) -> _Read | None:
    status, end = _scan_string(data, scan.pos, data[start])
    if status is _Kind.INCOMPLETE:
        scan.pos = end
        return None
    if status is _Kind.MALFORMED:
        return _unterminated(data, start, end)

    token = bytes(data[start:end])
    body = token[1:-1]
    try:
        if b"\\" in body:
            # Escapes are legal in the reader grammar; resolve them first.
            body = ast.literal_eval(token.decode("utf-8")).encode("utf-8")
        value = decode(body)
    except (DecodeError, ValueError, SyntaxError) as exc:
        return _Read(
            _Kind.MALFORMED,
            end,
            detail=f"Undecodable frame {_preview(token)}: {exc}",
        )
    return _Read(_Kind.VALUE, end, value)


def _read_bracketed(data: bytearray, start: int, scan: _Scan) -> _Read | None:
    expected = scan.expected
    pos = scan.pos

    if scan.inside == _HASH:
        newline = data.find(b"\n", pos)
        if newline < 0:
            scan.pos = len(data)
            return None
        pos = newline + 1
    elif scan.inside is not None:
        status, pos = _scan_string(data, pos, scan.inside)
        if status is _Kind.INCOMPLETE:
            scan.pos = pos
            return None
        if status is _Kind.MALFORMED:
            return _unterminated(data, start, pos)
    scan.inside = None

    while True:
        match = _BRACKET_STOP.search(data, pos)
        if match is None:
            scan.pos = len(data)
            return None
        pos = match.start()
        byte = data[pos]

        if byte in _QUOTES:
            status, end = _scan_string(data, pos + 1, byte)
            if status is _Kind.INCOMPLETE:
                scan.inside = byte
                scan.pos = end
                return None
            if status is _Kind.MALFORMED:
                return _unterminated(data, pos, end)
            pos = end
            continue
        if byte == _HASH:
            newline = data.find(b"\n", pos)
            if newline < 0:
                scan.inside = _HASH
                scan.pos = len(data)
                return None
            pos = newline + 1
            continue

        if byte in _OPENERS:
            expected.append(_OPENERS[byte])
        elif byte != expected[-1]:
            return _Read(
                _Kind.MALFORMED,
                pos + 1,
                detail=(
                    f"Mismatched {chr(byte)!r} in "
                    f"{_preview(data[start : pos + 1])}"
                ),
            )
        else:
            expected.pop()
            if not expected:
                return _eval_literal(data, start, pos + 1)
        pos += 1


def _read_atom(data: bytearray, start: int, scan: _Scan) -> _Read | None:
    match = _ATOM_END.search(data, scan.pos)
    if match is None:
        # The atom may continue in the next chunk.
        scan.pos = len(data)
        return None
    pos = match.start()

    try:
        text = data[start:pos].decode("utf-8")
    except UnicodeDecodeError:
        return _Read(
            _Kind.MALFORMED,
            pos,
            detail=f"Invalid UTF-8 in token {_preview(data[start:pos])}",
        )

    if text in _CONSTANTS:
        return _Read(_Kind.VALUE, pos, _CONSTANTS[text])
    if all(part.isidentifier() for part in text.split(".")):
        return _Read(_Kind.SYMBOL, pos, text)

    outcome = _eval_literal(data, start, pos)
    if outcome.kind is _Kind.VALUE and type(outcome.value) not in (
        int,
        float,
        complex,
    ):
        return _Read(_Kind.MALFORMED, pos, detail=f"Invalid token {text!r}")
    return outcome


def _eval_literal(data: bytearray, start: int, end: int) -> _Read:
    raw = bytes(data[start:end])
    try:
        value = ast.literal_eval(raw.decode("utf-8"))
    except (
        UnicodeDecodeError,
        ValueError,
        SyntaxError,
        TypeError,
        MemoryError,
        RecursionError,
    ) as exc:
        return _Read(
            _Kind.MALFORMED,
            end,
            detail=f"Invalid literal {_preview(raw)}: {exc}",
        )
    return _Read(_Kind.VALUE, end, value)


def _preview(raw: bytes | bytearray) -> str:
    text = bytes(raw).decode("utf-8", "replace")
    if len(text) > _PREVIEW_LEN:
        return repr(text[:_PREVIEW_LEN]) + "..."
    return repr(text)
