"""Tests for the message dispatcher."""

from __future__ import annotations

from typing import Any

import pytest

from procwire.errors import ProtocolError
from procwire.protocol.dispatch import Dispatcher, is_error_event
from procwire.protocol.framing import frame
from procwire.protocol.reader import ReceiveBuffer
from procwire.worker.supervisor import WorkerHandler

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_dispatcher(
    received: list[Any] | None = None,
    control: Any = None,
) -> Dispatcher:
    handler = WorkerHandler(filter=received.append if received is not None else None)
    return Dispatcher(handler, "test-worker", control=control)


# ===================================================================
# Error events
# ===================================================================


class TestIsErrorEvent:
    @pytest.mark.parametrize(
        "value",
        [("error",), ("error", "boom"), ["error", 1, 2], ("error", {"code": 3})],
    )
    def test_error_events(self, value: Any) -> None:
        assert is_error_event(value)

    @pytest.mark.parametrize(
        "value",
        ["error", (), ("errors", 1), ("boom", "error"), {"error": 1}, (b"error",)],
    )
    def test_ordinary_values(self, value: Any) -> None:
        assert not is_error_event(value)


# ===================================================================
# Dispatch
# ===================================================================


class TestDispatch:
    def test_values_reach_filter_in_order(self) -> None:
        received: list[Any] = []
        dispatcher = _make_dispatcher(received)
        assert dispatcher.dispatch([1, "two", (3,)]) == 3
        assert received == [1, "two", (3,)]
        assert dispatcher.delivered == 3

    def test_no_filter_drops_silently(self) -> None:
        dispatcher = _make_dispatcher()
        assert dispatcher.dispatch([1, 2]) == 0
        assert dispatcher.delivered == 0

    def test_error_event_raises_without_filter_call(self) -> None:
        received: list[Any] = []
        dispatcher = _make_dispatcher(received)
        with pytest.raises(ProtocolError) as exc_info:
            dispatcher.dispatch([("error", "boom")])
        assert exc_info.value.payload == ("boom",)
        assert received == []

    def test_bare_error_tag_has_empty_payload(self) -> None:
        with pytest.raises(ProtocolError) as exc_info:
            _make_dispatcher([]).dispatch([["error"]])
        assert exc_info.value.payload == ()

    def test_control_consumes_values(self) -> None:
        received: list[Any] = []
        seen: list[Any] = []

        def control(value: Any) -> bool:
            seen.append(value)
            return value == "ping"

        dispatcher = _make_dispatcher(received, control=control)
        dispatcher.dispatch(["ping", "data"])
        assert seen == ["ping", "data"]
        assert received == ["data"]

    def test_filter_swap_takes_effect_immediately(self) -> None:
        first: list[Any] = []
        second: list[Any] = []
        handler = WorkerHandler(filter=first.append)

        def swap(value: Any) -> bool:
            if value == "swap":
                handler.filter = second.append
                return True
            return False

        dispatcher = Dispatcher(handler, control=swap)
        dispatcher.dispatch([1, "swap", 2])
        assert first == [1]
        assert second == [2]


# ===================================================================
# Deliver (feed + dispatch)
# ===================================================================


class TestDeliver:
    def test_error_frame_scenario(self) -> None:
        received: list[Any] = []
        buffer = ReceiveBuffer()
        with pytest.raises(ProtocolError) as exc_info:
            _make_dispatcher(received).deliver(buffer, frame(("error", "boom")))
        assert exc_info.value.payload == ("boom",)
        assert "boom" in str(exc_info.value)
        assert received == []

    def test_raw_error_literal(self) -> None:
        with pytest.raises(ProtocolError):
            _make_dispatcher([]).deliver(ReceiveBuffer(), b'("error", "boom")\n')

    def test_values_after_error_stay_buffered(self) -> None:
        received: list[Any] = []
        dispatcher = _make_dispatcher(received)
        buffer = ReceiveBuffer()
        data = frame(1) + frame(("error", 2)) + frame(3)
        with pytest.raises(ProtocolError):
            dispatcher.deliver(buffer, data)
        assert received == [1]
        assert dispatcher.deliver(buffer, b"") == 1
        assert received == [1, 3]

    def test_filter_exception_keeps_rest_buffered(self) -> None:
        received: list[Any] = []

        def flaky(value: Any) -> None:
            received.append(value)
            if value == 1:
                raise RuntimeError("filter failed")

        dispatcher = Dispatcher(WorkerHandler(filter=flaky))
        buffer = ReceiveBuffer()
        with pytest.raises(RuntimeError):
            dispatcher.deliver(buffer, frame(1) + frame(2))
        assert dispatcher.deliver(buffer, b"") == 1
        assert received == [1, 2]

    def test_partial_chunks(self) -> None:
        received: list[Any] = []
        dispatcher = _make_dispatcher(received)
        buffer = ReceiveBuffer()
        data = frame({"k": "v"})
        assert dispatcher.deliver(buffer, data[:5]) == 0
        assert dispatcher.deliver(buffer, data[5:]) == 1
        assert received == [{"k": "v"}]
