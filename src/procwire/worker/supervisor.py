"""Worker supervisor — spawns workers and owns their lifecycle.

Each :class:`Worker` wraps one ``python -m procwire.worker`` child.  A
background pump task reads the child's stdout in chunks, feeds them to the
worker's receive buffer, and dispatches complete messages to the filter.
When the child exits the sentinel is told the terminal state, then an
owned receive buffer is released.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import os
import signal
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from procwire.config.models import ProcwireConfig, WorkerConfig
from procwire.constants import READY_TAG, WORKER_MODULE, FilterCallback, SentinelCallback
from procwire.errors import BufferReleasedError, InvalidEntryPoint, ProtocolError, WorkerNotRunning
from procwire.protocol.dispatch import Dispatcher
from procwire.protocol.framing import FrameWriter
from procwire.protocol.reader import ReceiveBuffer
from procwire.trace.recorder import TraceRecorder
from procwire.worker import entry as entry_points

logger = logging.getLogger(__name__)

#: Signals that count as the worker being killed rather than crashing.
_KILL_SIGNALS = frozenset(
    getattr(signal, name)
    for name in ("SIGKILL", "SIGTERM", "SIGINT", "SIGHUP")
    if hasattr(signal, name)
)


class WorkerState(enum.Enum):
    """Lifecycle states; the last five are terminal."""

    SPAWNED = "spawned"
    RUNNING = "running"
    EXITED = "exited"
    FAILED = "failed"
    FINISHED = "finished"
    KILLED = "killed"
    DELETED = "deleted"

    @property
    def terminal(self) -> bool:
        return self not in (WorkerState.SPAWNED, WorkerState.RUNNING)


@dataclass
class WorkerHandler:
    """Callbacks held per worker.

    * ``filter(value)`` — every decoded non-error message, in order.
    * ``sentinel(worker, label)`` — every state transition, in order.
    * ``on_error(worker, exc)`` — every ``ProtocolError`` hit while pumping.
    """

    filter: FilterCallback | None = None
    sentinel: SentinelCallback | None = None
    on_error: Callable[[Worker, ProtocolError], None] | None = None


class Worker:
    """A live worker process and the state needed to talk to it."""

    def __init__(
        self,
        name: str,
        process: asyncio.subprocess.Process,
        handler: WorkerHandler,
        buffer: ReceiveBuffer,
        owns_buffer: bool,
        config: WorkerConfig,
        recorder: TraceRecorder | None = None,
        on_terminal: Callable[[Worker], None] | None = None,
    ) -> None:
        if process.stdin is None or process.stdout is None:
            msg = "Worker process needs piped stdin and stdout"
            raise ValueError(msg)

        self.name = name
        self.handler = handler
        self.buffer = buffer
        self.owns_buffer = owns_buffer
        self.protocol_errors: list[ProtocolError] = []

        self._process = process
        self._config = config
        self._recorder = recorder
        self._on_terminal = on_terminal
        self._state = WorkerState.SPAWNED
        self._delete_requested = False
        self._writer = FrameWriter(process.stdin, name)
        self._dispatcher = Dispatcher(handler, name, control=self._intercept)
        self._pump_task: asyncio.Task[None] | None = None
        self._running = asyncio.Event()
        self._done = asyncio.Event()

    def __repr__(self) -> str:
        return f"<Worker {self.name} pid={self.pid} {self._state.value}>"

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def returncode(self) -> int | None:
        """Exit status once the process has exited, else ``None``."""
        return self._process.returncode

    @property
    def delivered(self) -> int:
        """Number of messages handed to the filter so far."""
        return self._dispatcher.delivered

    # ------------------------------------------------------------------ #
    # Handler registration
    # ------------------------------------------------------------------ #

    def set_filter(self, callback: FilterCallback | None) -> None:
        """Replace (or with ``None`` remove) the message filter."""
        self.handler.filter = callback

    def set_sentinel(self, callback: SentinelCallback | None) -> None:
        """Replace (or with ``None`` remove) the state-transition sentinel."""
        self.handler.sentinel = callback

    # ------------------------------------------------------------------ #
    # Messaging
    # ------------------------------------------------------------------ #

    async def send(self, value: Any) -> None:
        """Send *value* to the worker's stdin.

        Raises:
            WorkerNotRunning: the worker has not finished its handshake yet,
                or has already reached a terminal state.
            EncodeError: *value* has no wire representation.
        """
        if self._state is not WorkerState.RUNNING:
            msg = f"Worker '{self.name}' is {self._state.value}, not running"
            raise WorkerNotRunning(msg)
        await self._writer.send(value)
        if self._recorder is not None:
            self._recorder.message(self.name, "out", value)

    def feed_output(self, chunk: bytes) -> int:
        """Process one chunk of worker stdout; return messages delivered.

        This is the per-chunk callback the pump calls.  It raises
        ``ProtocolError`` for a malformed token or an error message; any
        messages that came after it stay buffered for the next chunk.
        """
        return self._dispatcher.deliver(self.buffer, chunk)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def wait_running(self) -> None:
        """Wait for the worker's handshake.

        Raises:
            WorkerNotRunning: the worker reached a terminal state first.
        """
        running = asyncio.ensure_future(self._running.wait())
        done = asyncio.ensure_future(self._done.wait())
        try:
            await asyncio.wait({running, done}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            running.cancel()
            done.cancel()
        if self._state is not WorkerState.RUNNING:
            msg = f"Worker '{self.name}' ended as {self._state.value} before running"
            raise WorkerNotRunning(msg)

    async def wait(self) -> str:
        """Wait for a terminal state and return its label."""
        await self._done.wait()
        return self._state.value

    def kill(self) -> None:
        """Send SIGKILL to the worker."""
        with contextlib.suppress(ProcessLookupError):
            self._process.kill()

    def terminate(self) -> None:
        """Send SIGTERM to the worker."""
        with contextlib.suppress(ProcessLookupError):
            self._process.terminate()

    def delete(self) -> None:
        """Kill the worker and report it as ``deleted`` rather than ``killed``."""
        if self._state.terminal:
            return
        self._delete_requested = True
        self.kill()

    async def close_input(self) -> None:
        """Close the worker's stdin so a reading worker sees EOF."""
        await self._writer.close()

    async def shutdown(self) -> str:
        """Graceful shutdown: close stdin -> wait -> SIGTERM -> SIGKILL."""
        if self._state.terminal:
            return self._state.value

        await self.close_input()
        try:
            await asyncio.wait_for(self._done.wait(), timeout=self._config.shutdown_wait)
        except TimeoutError:
            self.terminate()
            try:
                await asyncio.wait_for(
                    self._done.wait(), timeout=self._config.sigterm_wait
                )
            except TimeoutError:
                self.kill()
                await self._done.wait()
        return self._state.value

    # ------------------------------------------------------------------ #
    # Supervisor hooks
    # ------------------------------------------------------------------ #

    async def _bootstrap(self, payload: dict[str, Any]) -> None:
        """Write the bootstrap frame; the only write allowed before running."""
        try:
            await self._writer.send(payload)
        except WorkerNotRunning as exc:
            # The pump reports the exit through the sentinel.
            logger.warning("%s: bootstrap write failed: %s", self.name, exc)

    def _start_pump(self) -> None:
        self._pump_task = asyncio.create_task(
            self._pump(), name=f"procwire-pump-{self.name}"
        )

    async def _pump(self) -> None:
        """Read stdout until EOF, then report the terminal state."""
        failed = False
        try:
            await self._read_output()
        except Exception:
            logger.exception("%s: output pump failed", self.name)
            failed = True
            self.kill()

        returncode = await self._process.wait()
        self._transition(self._terminal_state(returncode, failed), returncode)

    async def _read_output(self) -> None:
        stdout = self._process.stdout
        if stdout is None:
            return
        while True:
            chunk = await stdout.read(self._config.read_chunk_size)
            if not chunk:
                break
            self._handle_chunk(chunk)
        self._flush()

    def _handle_chunk(self, chunk: bytes) -> None:
        try:
            self.feed_output(chunk)
        except ProtocolError as exc:
            self._report_protocol_error(exc)
        except BufferReleasedError:
            raise
        except Exception:
            logger.exception("%s: filter raised while handling output", self.name)

    def _flush(self) -> None:
        """Dispatch whatever an error left buffered once output has ended."""
        while not self.buffer.released:
            try:
                self.feed_output(b"")
            except ProtocolError as exc:
                self._report_protocol_error(exc)
                continue
            except Exception:
                logger.exception("%s: filter raised while handling output", self.name)
                continue
            return

    def _report_protocol_error(self, exc: ProtocolError) -> None:
        logger.error("%s: protocol error: %s", self.name, exc.detail)
        self.protocol_errors.append(exc)
        if self._recorder is not None:
            self._recorder.protocol_error(self.name, exc.detail, exc.payload)
        if self.handler.on_error is not None:
            try:
                self.handler.on_error(self, exc)
            except Exception:
                logger.exception("%s: on_error callback raised", self.name)

    def _intercept(self, value: Any) -> bool:
        """Consume the startup handshake; record everything else."""
        if self._recorder is not None:
            self._recorder.message(self.name, "in", value)
        if (
            self._state is WorkerState.SPAWNED
            and isinstance(value, tuple)
            and len(value) == 2
            and value[0] == READY_TAG
        ):
            self._transition(WorkerState.RUNNING)
            return True
        return False

    def _terminal_state(self, returncode: int, failed: bool) -> WorkerState:
        if self._delete_requested:
            return WorkerState.DELETED
        if failed:
            return WorkerState.FAILED
        if returncode == 0:
            return WorkerState.FINISHED
        if returncode > 0:
            return WorkerState.EXITED
        if -returncode in _KILL_SIGNALS:
            return WorkerState.KILLED
        return WorkerState.FAILED

    def _transition(self, state: WorkerState, returncode: int | None = None) -> None:
        if self._state.terminal:
            return
        self._state = state
        logger.info("%s: %s", self.name, state.value)
        if self._recorder is not None:
            self._recorder.transition(self.name, state.value, returncode)

        if self.handler.sentinel is not None:
            try:
                self.handler.sentinel(self, state.value)
            except Exception:
                logger.exception("%s: sentinel raised on '%s'", self.name, state.value)

        if state is WorkerState.RUNNING:
            self._running.set()
        if state.terminal:
            if self.owns_buffer:
                self.buffer.release()
            self._done.set()
            if self._on_terminal is not None:
                self._on_terminal(self)


class Supervisor:
    """Spawns workers and keeps track of the live ones.

    Use as an async context manager to shut every worker down on exit::

        async with Supervisor() as supervisor:
            worker = await supervisor.spawn("jobs:run", filter=print)
            await worker.wait_running()
            await worker.send({"job": 1})
    """

    def __init__(
        self,
        config: ProcwireConfig | None = None,
        transport_factory: str | None = None,
        recorder: TraceRecorder | None = None,
    ) -> None:
        self._config = config if config is not None else ProcwireConfig()
        self._transport_factory = transport_factory
        self._owns_recorder = False
        if recorder is None and self._config.trace.enabled:
            recorder = TraceRecorder("procwire", Path(self._config.trace.directory))
            self._owns_recorder = True
        self._recorder = recorder
        self._workers: dict[str, Worker] = {}
        self._counter = 0

    async def __aenter__(self) -> Supervisor:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    @property
    def workers(self) -> dict[str, Worker]:
        """Live (non-terminal) workers by name."""
        return dict(self._workers)

    @property
    def transport_factory(self) -> str | None:
        """Import path of the transport given to one-argument entry points."""
        return (
            self._transport_factory
            or self._config.worker.transport
            or entry_points.DEFAULT_TRANSPORT
        )

    async def spawn(
        self,
        entry_point: str | Callable[..., Any],
        filter: FilterCallback | None = None,
        sentinel: SentinelCallback | None = None,
        buffer: ReceiveBuffer | None = None,
        *,
        name: str | None = None,
        on_error: Callable[[Worker, ProtocolError], None] | None = None,
    ) -> Worker:
        """Start a worker running *entry_point* and return it in ``spawned``.

        Args:
            entry_point: Module-level callable, or ``"module:qualname"``.
                A one-argument entry point receives a fresh transport that
                is torn down when it returns.
            filter: Called with every decoded message.
            sentinel: Called with ``(worker, label)`` on every transition.
            buffer: Receive buffer to reuse.  The caller keeps ownership;
                when omitted a private buffer is released on exit.
            name: Worker name (defaults to ``worker-N``).
            on_error: Called with every ``ProtocolError`` from the stream.

        Raises:
            InvalidEntryPoint: before any process is created.
            BufferReleasedError: *buffer* has already been released.
        """
        entry = entry_points.load_entry_point(entry_point)
        transport = self.transport_factory if entry.wants_transport else None
        if entry.wants_transport and transport is None:
            msg = f"Entry point '{entry.path}' takes a transport but none is configured"
            raise InvalidEntryPoint(msg)

        owns_buffer = buffer is None
        if buffer is None:
            buffer = ReceiveBuffer()
        elif buffer.released:
            msg = "Cannot spawn a worker on a released receive buffer"
            raise BufferReleasedError(msg)

        self._counter += 1
        if name is None:
            name = f"worker-{self._counter}"

        cfg = self._config.worker
        python = cfg.python or sys.executable
        try:
            process = await asyncio.create_subprocess_exec(
                python,
                "-m",
                WORKER_MODULE,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                env=self._worker_env(entry),
                limit=cfg.stream_limit,
            )
        except OSError as exc:
            logger.error("%s: failed to spawn worker process: %s", name, exc)
            raise

        worker = Worker(
            name=name,
            process=process,
            handler=WorkerHandler(filter=filter, sentinel=sentinel, on_error=on_error),
            buffer=buffer,
            owns_buffer=owns_buffer,
            config=cfg,
            recorder=self._recorder,
            on_terminal=self._forget,
        )
        self._workers[name] = worker
        if self._recorder is not None:
            self._recorder.spawned(name, process.pid, entry.path)
        worker._transition(WorkerState.SPAWNED)

        await worker._bootstrap(
            {
                "entry": entry.path,
                "transport": transport,
                "isolate_stdout": cfg.isolate_stdout,
            }
        )
        worker._start_pump()
        return worker

    async def shutdown(self) -> None:
        """Shut every live worker down, then close an owned trace."""
        workers = list(self._workers.values())
        if workers:
            results = await asyncio.gather(
                *(worker.shutdown() for worker in workers),
                return_exceptions=True,
            )
            for worker, result in zip(workers, results, strict=True):
                if isinstance(result, BaseException):
                    logger.error("%s: shutdown failed: %s", worker.name, result)
        if self._owns_recorder and self._recorder is not None:
            self._recorder.end()

    def _forget(self, worker: Worker) -> None:
        self._workers.pop(worker.name, None)

    def _worker_env(self, entry: entry_points.EntryPoint) -> dict[str, str]:
        cfg = self._config.worker
        env = dict(os.environ)
        env.update(cfg.env)

        paths = list(cfg.pythonpath)
        if entry.search_path is not None:
            paths.append(entry.search_path)
        # Make procwire itself importable even when it is not installed.
        paths.append(str(Path(__file__).resolve().parents[2]))
        existing = env.get("PYTHONPATH")
        if existing:
            paths.append(existing)
        env["PYTHONPATH"] = os.pathsep.join(paths)
        return env
