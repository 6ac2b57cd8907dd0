"""procwire encode / decode — inspect wire frames from the shell."""

from __future__ import annotations

import ast
from typing import Any, BinaryIO

import click

from procwire.errors import EncodeError, ProtocolError
from procwire.protocol.framing import frame
from procwire.protocol.reader import ReceiveBuffer, feed

_CHUNK_SIZE = 65_536


@click.command()
@click.argument("literal")
def encode(literal: str) -> None:
    """Print the wire frame for a Python LITERAL."""
    try:
        value = ast.literal_eval(literal)
    except (ValueError, SyntaxError) as exc:
        click.echo(f"Error: not a Python literal: {literal!r}", err=True)
        raise SystemExit(1) from exc

    try:
        data = frame(value)
    except EncodeError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    click.echo(data.decode("ascii"), nl=False)


@click.command()
@click.argument("source", type=click.File("rb"), default="-")
def decode(source: BinaryIO) -> None:
    """Read worker output from SOURCE (default stdin) and print each value.

    Protocol errors are reported on stderr and reading carries on with the
    next token; the exit status is 1 if there were any.
    """
    buffer = ReceiveBuffer()
    errors = 0
    while True:
        chunk = source.read(_CHUNK_SIZE)
        errors += _drain(buffer, chunk)
        if not chunk:
            break

    if len(buffer):
        click.echo(f"Incomplete trailing data: {buffer.pending[:40]!r}", err=True)
        errors += 1
    raise SystemExit(1 if errors else 0)


def _drain(buffer: ReceiveBuffer, chunk: bytes) -> int:
    """Print every complete value; return the number of protocol errors."""
    errors = 0
    while True:
        try:
            for value in feed(buffer, chunk):
                _echo_value(value)
        except ProtocolError as exc:
            click.echo(click.style(f"error: {exc}", fg="red"), err=True)
            errors += 1
            chunk = b""
            continue
        return errors


def _echo_value(value: Any) -> None:
    click.echo(repr(value))
