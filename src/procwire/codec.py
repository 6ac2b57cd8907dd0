"""Value codec — printed Python literals wrapped in base64.

A value is printed with ``repr``, encoded as UTF-8, and base64-encoded.
The resulting block only uses the base64 alphabet, so it can never contain
the frame delimiter and survives any process-stream text encoding.
``decode`` reverses the steps and parses the printed value back with
``ast.literal_eval``.
"""

from __future__ import annotations

import ast
import base64
import binascii
import math
from typing import Any

from procwire.errors import DecodeError, EncodeError

#: Scalar types that print as literals ``ast.literal_eval`` accepts.
_SCALARS = (type(None), bool, int, str, bytes)

#: Maximum characters of a bad block quoted back in error messages.
_PREVIEW_LEN = 60


def encode(value: Any) -> bytes:
    """Return the base64 block for *value*.

    Raises:
        EncodeError: *value* (or something inside it) has no literal form.
    """
    try:
        _check_printable(value, set())
        printed = repr(value)
    except RecursionError as exc:
        msg = "Value is nested too deeply to print"
        raise EncodeError(msg) from exc
    except ValueError as exc:
        # int -> str conversion limit for very large integers.
        msg = f"Cannot print value: {exc}"
        raise EncodeError(msg) from exc

    try:
        raw = printed.encode("utf-8")
    except UnicodeEncodeError as exc:
        msg = f"Cannot encode printed value as UTF-8: {exc}"
        raise EncodeError(msg) from exc
    return base64.b64encode(raw)


def decode(block: bytes | str) -> Any:
    """Parse a base64 block produced by :func:`encode`.

    Raises:
        DecodeError: The block is not base64, not UTF-8, or not a literal.
    """
    if isinstance(block, str):
        try:
            block = block.encode("ascii")
        except UnicodeEncodeError as exc:
            msg = f"Non-ASCII character in block: {_preview(block)}"
            raise DecodeError(msg) from exc

    try:
        raw = base64.b64decode(block, validate=True)
    except (binascii.Error, ValueError) as exc:
        msg = f"Invalid base64 block {_preview(block)}: {exc}"
        raise DecodeError(msg) from exc

    try:
        printed = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        msg = f"Invalid UTF-8 in decoded block: {exc}"
        raise DecodeError(msg) from exc

    try:
        return ast.literal_eval(printed)
    except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError) as exc:
        msg = f"Unparsable value {printed[:_PREVIEW_LEN]!r}: {exc}"
        raise DecodeError(msg) from exc


def _check_printable(value: Any, active: set[int]) -> None:
    """Walk *value* and reject anything ``repr`` cannot print as a literal."""
    # Exact types only: subclasses (enums, str subclasses) print differently.
    if type(value) in _SCALARS:
        return

    if type(value) is float:
        if not math.isfinite(value):
            msg = f"Non-finite float {value!r} has no literal form"
            raise EncodeError(msg)
        return

    if type(value) is complex:
        if not (math.isfinite(value.real) and math.isfinite(value.imag)):
            msg = f"Non-finite complex {value!r} has no literal form"
            raise EncodeError(msg)
        return

    if type(value) not in (list, tuple, dict, set):
        msg = f"Cannot encode value of type {type(value).__name__}"
        raise EncodeError(msg)

    ident = id(value)
    if ident in active:
        msg = f"Circular reference in {type(value).__name__}"
        raise EncodeError(msg)
    active.add(ident)
    try:
        if isinstance(value, dict):
            for key, item in value.items():
                _check_printable(key, active)
                _check_printable(item, active)
        else:
            for item in value:
                _check_printable(item, active)
    finally:
        active.discard(ident)


def _preview(block: bytes | str) -> str:
    text = block if isinstance(block, str) else block.decode("ascii", "replace")
    if len(text) > _PREVIEW_LEN:
        return repr(text[:_PREVIEW_LEN]) + "..."
    return repr(text)
