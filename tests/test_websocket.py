"""Tests for the signaling event bus."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from smartconnect.const import SignalEvent
from smartconnect.models import SignalingEvent
from smartconnect.websocket import EventBus


class FakeWebSocket:
    """Stand-in for aiohttp.ClientWebSocketResponse."""

    def __init__(self, messages: list[Any] | None = None) -> None:
        self.messages = list(messages or [])
        self.sent: list[dict[str, Any]] = []
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.messages:
            raise StopAsyncIteration
        return self.messages.pop(0)

    async def send_json(self, data: dict[str, Any]) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True

    def exception(self):
        return None


class BlockingWebSocket(FakeWebSocket):
    """WebSocket that stays open until closed."""

    def __init__(self) -> None:
        super().__init__()
        self._closed_event = asyncio.Event()

    async def __anext__(self):
        await self._closed_event.wait()
        raise StopAsyncIteration

    async def close(self) -> None:
        await super().close()
        self._closed_event.set()


def text_frame(event: str, data: dict[str, Any] | None = None) -> MagicMock:
    message = MagicMock()
    message.type = aiohttp.WSMsgType.TEXT
    message.data = json.dumps({"event": event, "data": data or {}})
    return message


def make_bus(websocket=None, **kwargs) -> tuple[EventBus, MagicMock]:
    session = MagicMock()
    session.ws_connect = AsyncMock(return_value=websocket or BlockingWebSocket())
    return EventBus(session, "ws://signaling.test/ws", **kwargs), session


class TestListenerTable:
    """Test subscription and dispatch."""

    def test_callbacks_run_in_registration_order(self):
        bus, _ = make_bus()
        calls = []
        bus.subscribe(SignalEvent.CALL_ENDED, lambda event: calls.append("first"))
        bus.subscribe(SignalEvent.CALL_ENDED, lambda event: calls.append("second"))

        bus._dispatch(SignalingEvent(SignalEvent.CALL_ENDED, {}))

        assert calls == ["first", "second"]

    def test_failing_callback_does_not_block_others(self):
        bus, _ = make_bus()
        calls = []

        def _boom(event):
            raise RuntimeError("listener failure")

        bus.subscribe(SignalEvent.CALL_ENDED, _boom)
        bus.subscribe(SignalEvent.CALL_ENDED, calls.append)

        bus._dispatch(SignalingEvent(SignalEvent.CALL_ENDED, {}))

        assert len(calls) == 1
        assert bus.statistics["callback_failures"] == 1

    def test_unsubscribe_without_callback_removes_all(self):
        bus, _ = make_bus()
        calls = []
        bus.subscribe(SignalEvent.INCOMING_CALL, calls.append)
        bus.subscribe(SignalEvent.INCOMING_CALL, calls.append)

        bus.unsubscribe(SignalEvent.INCOMING_CALL)
        bus._dispatch(SignalingEvent(SignalEvent.INCOMING_CALL, {}))

        assert calls == []
        assert bus.listener_count(SignalEvent.INCOMING_CALL) == 0

    def test_unsubscribe_specific_callback(self):
        bus, _ = make_bus()
        first, second = [], []
        bus.subscribe("callEnded", first.append)
        bus.subscribe("callEnded", second.append)

        bus.unsubscribe("callEnded", first.append)
        bus._dispatch(SignalingEvent(SignalEvent.CALL_ENDED, {}))

        assert first == []
        assert len(second) == 1

    def test_subscribe_returns_remover(self):
        bus, _ = make_bus()
        calls = []
        remove = bus.subscribe(SignalEvent.CALL_ENDED, calls.append)

        remove()
        remove()

        assert bus.listener_count(SignalEvent.CALL_ENDED) == 0

    def test_unknown_event_name_rejected(self):
        bus, _ = make_bus()
        with pytest.raises(ValueError):
            bus.subscribe("callTeleported", print)


class TestMessageHandling:
    """Test decoding and validation of inbound frames."""

    def test_valid_frame_dispatched_with_aliases(self):
        bus, _ = make_bus()
        received = []
        bus.subscribe(SignalEvent.INCOMING_CALL, received.append)

        bus._handle_message(
            json.dumps(
                {
                    "event": "incomingCall",
                    "data": {"callSid": "CA1", "from": "+15551230000"},
                }
            )
        )

        assert len(received) == 1
        assert received[0].call_id == "CA1"
        assert received[0].data["phone_number"] == "+15551230000"
        assert received[0].data["status"] == "ringing"

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            json.dumps(["incomingCall"]),
            json.dumps({"data": {}}),
            json.dumps({"event": "callTeleported", "data": {}}),
            json.dumps({"event": "connect", "data": {}}),
            json.dumps({"event": "callStatusUpdate", "data": {"callId": "CA1"}}),
            json.dumps({"event": "incomingCall", "data": {"callId": "CA1"}}),
            json.dumps(
                {"event": "incomingCall", "data": {"callId": "CA1", "from": ""}}
            ),
        ],
    )
    def test_bad_frames_dropped(self, raw):
        bus, _ = make_bus()
        received = []
        for event in SignalEvent:
            bus.subscribe(event, received.append)

        bus._handle_message(raw)

        assert received == []
        assert bus.statistics["events_dropped"] == 1


class TestConnection:
    """Test the connection lifecycle."""

    @pytest.mark.asyncio
    async def test_connect_dispatches_connect_and_is_idempotent(self):
        bus, session = make_bus()
        connected = asyncio.Event()
        bus.subscribe(SignalEvent.CONNECT, lambda event: connected.set())

        await bus.connect()
        await bus.connect()
        await asyncio.wait_for(connected.wait(), 1)

        assert bus.is_connected()
        assert session.ws_connect.await_count == 1

        await bus.disconnect()
        assert not bus.connected

    @pytest.mark.asyncio
    async def test_token_sent_on_upgrade(self):
        bus, session = make_bus(token="secret")
        connected = asyncio.Event()
        bus.subscribe(SignalEvent.CONNECT, lambda event: connected.set())

        await bus.connect()
        await asyncio.wait_for(connected.wait(), 1)

        headers = session.ws_connect.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret"
        await bus.disconnect()

    @pytest.mark.asyncio
    async def test_frames_reach_listeners_then_disconnect(self):
        websocket = FakeWebSocket(
            [text_frame("callEnded", {"callId": "CA1", "reason": "busy"})]
        )
        bus, _ = make_bus(websocket, reconnect_delay=0.01, max_reconnect_attempts=1)
        ended, disconnected = [], asyncio.Event()
        bus.subscribe(SignalEvent.CALL_ENDED, ended.append)
        bus.subscribe(SignalEvent.DISCONNECT, lambda event: disconnected.set())

        await bus.connect()
        await asyncio.wait_for(disconnected.wait(), 1)
        await bus.disconnect()

        assert ended[0].data["reason"] == "busy"
        assert websocket.closed

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        session = MagicMock()
        session.ws_connect = AsyncMock(side_effect=aiohttp.ClientError("refused"))
        bus = EventBus(
            session,
            "ws://signaling.test/ws",
            reconnect_delay=0.01,
            max_reconnect_delay=0.02,
            max_reconnect_attempts=3,
        )
        errors = []
        bus.subscribe(SignalEvent.ERROR, errors.append)

        await bus.connect()
        await asyncio.wait_for(bus._connection_task, 1)

        assert session.ws_connect.await_count == 3
        assert errors[-1].data["message"] == "Max reconnection attempts reached"
        assert not bus.connected

    @pytest.mark.asyncio
    async def test_unexpected_listen_error_reported(self):
        class BrokenWebSocket(FakeWebSocket):
            async def __anext__(self):
                raise RuntimeError("socket broke")

        bus, _ = make_bus(BrokenWebSocket(), max_reconnect_attempts=1)
        errors, disconnects = [], []
        bus.subscribe(SignalEvent.ERROR, errors.append)
        bus.subscribe(SignalEvent.DISCONNECT, disconnects.append)

        await bus.connect()
        await asyncio.wait_for(bus._connection_task, 1)

        assert bus._connection_task.exception() is None
        assert not bus.connected
        assert len(disconnects) == 1
        assert errors[0].data["message"] == "socket broke"
        assert errors[-1].data["message"] == "Max reconnection attempts reached"

    @pytest.mark.asyncio
    async def test_disconnect_clears_listeners(self):
        bus, _ = make_bus()
        bus.subscribe(SignalEvent.CALL_ENDED, print)

        await bus.connect()
        await bus.disconnect()

        assert bus.listener_count(SignalEvent.CALL_ENDED) == 0

    @pytest.mark.asyncio
    async def test_send_requires_connection(self):
        bus, _ = make_bus()
        assert await bus.send("callEnded", {"callId": "CA1"}) is False

    @pytest.mark.asyncio
    async def test_send_json_frame(self):
        websocket = BlockingWebSocket()
        bus, _ = make_bus(websocket)
        connected = asyncio.Event()
        bus.subscribe(SignalEvent.CONNECT, lambda event: connected.set())
        await bus.connect()
        await asyncio.wait_for(connected.wait(), 1)

        assert await bus.send(SignalEvent.CALL_ENDED, {"callId": "CA1"})
        assert websocket.sent == [{"event": "callEnded", "data": {"callId": "CA1"}}]
        await bus.disconnect()
