"""Tests for frame construction and the stdin frame writer."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from procwire.codec import encode
from procwire.errors import EncodeError, WorkerNotRunning
from procwire.protocol.framing import FrameWriter, frame

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_stdin() -> MagicMock:
    """Create a mock StreamWriter."""
    stdin = MagicMock()
    stdin.write = MagicMock()
    stdin.drain = AsyncMock()
    stdin.close = MagicMock()
    stdin.is_closing = MagicMock(return_value=False)
    stdin.wait_closed = AsyncMock()
    return stdin


# ===================================================================
# frame()
# ===================================================================


class TestFrame:
    def test_layout(self) -> None:
        assert frame([1, 2]) == b'"' + encode([1, 2]) + b'"\n'

    def test_one_line_per_value(self) -> None:
        data = frame("multi\nline\ntext")
        assert data.count(b"\n") == 1
        assert data.count(b'"') == 2

    def test_unencodable(self) -> None:
        with pytest.raises(EncodeError):
            frame(object())


# ===================================================================
# FrameWriter
# ===================================================================


class TestFrameWriter:
    async def test_send_writes_one_frame(self) -> None:
        stdin = _make_stdin()
        writer = FrameWriter(stdin, "w1")
        size = await writer.send({"job": 1})
        stdin.write.assert_called_once_with(frame({"job": 1}))
        stdin.drain.assert_awaited_once()
        assert size == len(frame({"job": 1}))
        assert writer.frames_sent == 1

    async def test_encode_error_writes_nothing(self) -> None:
        stdin = _make_stdin()
        writer = FrameWriter(stdin)
        with pytest.raises(EncodeError):
            await writer.send([1, object()])
        stdin.write.assert_not_called()
        assert writer.frames_sent == 0

    @pytest.mark.parametrize("error", [BrokenPipeError, ConnectionResetError])
    async def test_closed_pipe_raises_not_running(self, error: type[Exception]) -> None:
        stdin = _make_stdin()
        stdin.drain = AsyncMock(side_effect=error())
        writer = FrameWriter(stdin, "w1")
        with pytest.raises(WorkerNotRunning, match="w1"):
            await writer.send(1)
        assert writer.frames_sent == 0

    async def test_concurrent_sends_do_not_interleave(self) -> None:
        events: list[Any] = []
        stdin = _make_stdin()
        stdin.write = MagicMock(side_effect=lambda data: events.append(("write", data)))

        async def slow_drain() -> None:
            await asyncio.sleep(0.01)
            events.append("drained")

        stdin.drain = slow_drain
        writer = FrameWriter(stdin)
        await asyncio.gather(*(writer.send(n) for n in range(3)))

        assert events[1::2] == ["drained"] * 3
        assert [data for _, data in events[0::2]] == [frame(n) for n in range(3)]
        assert writer.frames_sent == 3

    async def test_close(self) -> None:
        stdin = _make_stdin()
        writer = FrameWriter(stdin)
        await writer.close()
        stdin.close.assert_called_once()
        stdin.wait_closed.assert_awaited_once()

    async def test_close_is_idempotent(self) -> None:
        stdin = _make_stdin()
        stdin.is_closing = MagicMock(return_value=True)
        writer = FrameWriter(stdin)
        await writer.close()
        stdin.close.assert_not_called()
