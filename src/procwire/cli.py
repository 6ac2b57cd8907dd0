"""Root CLI group and version flag."""

import signal

import click

# Keep a closed stdout pipe (e.g. ``procwire decode | head``) from
# killing the process mid-echo.
if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_IGN)

from procwire import __version__
from procwire.commands.codec import decode, encode
from procwire.commands.run import run


@click.group()
@click.version_option(version=__version__, prog_name="procwire")
def cli() -> None:
    """Procwire — structured messaging with worker processes over stdio."""


cli.add_command(run)
cli.add_command(encode)
cli.add_command(decode)
