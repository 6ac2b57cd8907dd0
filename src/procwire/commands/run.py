"""procwire run — spawn one worker, send it values, print what comes back."""

from __future__ import annotations

import ast
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any

import click

from procwire.config.models import ProcwireConfig
from procwire.config.parser import ConfigError, load_config
from procwire.errors import (
    InvalidEntryPoint,
    ProcwireError,
    ProtocolError,
    WorkerNotRunning,
)
from procwire.worker.supervisor import Supervisor, Worker

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def parse_literal(
    ctx: click.Context | None, param: click.Parameter | None, values: tuple[str, ...]
) -> list[Any]:
    """Click callback: parse every ``--send`` value as a Python literal."""
    parsed = []
    for text in values:
        try:
            parsed.append(ast.literal_eval(text))
        except (ValueError, SyntaxError) as exc:
            msg = f"Not a Python literal: {text!r}"
            raise click.BadParameter(msg, ctx=ctx, param=param) from exc
    return parsed


@click.command()
@click.argument("entry")
@click.option(
    "-s",
    "--send",
    "values",
    multiple=True,
    callback=parse_literal,
    help="Python literal to send once the worker is running (repeatable).",
)
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for host and worker.",
)
def run(
    entry: str,
    values: list[Any],
    config_file: str | None,
    log_level: str,
) -> None:
    """Run ENTRY ('module:function') in a worker process.

    Every value the worker sends is printed on stdout; state transitions
    and protocol errors go to stderr.  Exits 0 when the worker finishes.
    """
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    level = log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
    )
    os.environ["PROCWIRE_LOG_LEVEL"] = level

    # Entry points are named relative to where the command is run.
    cwd = os.getcwd()
    if cwd not in sys.path:
        sys.path.insert(0, cwd)

    try:
        label = asyncio.run(_run_worker(config, entry, values))
    except InvalidEntryPoint as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(2) from exc
    except ProcwireError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    raise SystemExit(0 if label == "finished" else 1)


async def _run_worker(config: ProcwireConfig, entry: str, values: list[Any]) -> str:
    async with Supervisor(config) as supervisor:
        worker = await supervisor.spawn(
            entry,
            filter=_print_value,
            sentinel=_print_transition,
            on_error=_print_protocol_error,
        )
        try:
            await worker.wait_running()
        except WorkerNotRunning:
            return await worker.wait()

        for value in values:
            try:
                await worker.send(value)
            except WorkerNotRunning:
                break
        await worker.close_input()
        return await worker.wait()


def _print_value(value: Any) -> None:
    click.echo(repr(value))


def _print_transition(worker: Worker, label: str) -> None:
    click.echo(f"[{worker.name}] {label}", err=True)


def _print_protocol_error(worker: Worker, exc: ProtocolError) -> None:
    click.echo(click.style(f"[{worker.name}] error: {exc}", fg="red"), err=True)
