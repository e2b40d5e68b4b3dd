"""WebSocket signaling client with a typed listener table."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable

import aiohttp

from .const import (
    LIFECYCLE_EVENTS,
    WEBSOCKET_HEARTBEAT,
    WEBSOCKET_MAX_BACKOFF,
    WEBSOCKET_MAX_RECONNECT_ATTEMPTS,
    WEBSOCKET_RECONNECT_DELAY,
    SignalEvent,
)
from .exceptions import SmartConnectError
from .models import SignalingEvent
from .validation import validate_event_payload

_LOGGER = logging.getLogger(__name__)

EventCallback = Callable[[SignalingEvent], None]


class EventBusError(SmartConnectError):
    """WebSocket specific error."""


class EventBus:
    """Persistent signaling connection that fans events out to listeners."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        *,
        token: str | None = None,
        reconnect_delay: float = WEBSOCKET_RECONNECT_DELAY,
        max_reconnect_delay: float = WEBSOCKET_MAX_BACKOFF,
        max_reconnect_attempts: int = WEBSOCKET_MAX_RECONNECT_ATTEMPTS,
        connect_timeout: float = 10.0,
    ) -> None:
        """Initialize the event bus."""
        self._session = session
        self._url = url
        self._token = token
        self._connect_timeout = connect_timeout

        # Listener registrations, in invocation order
        self._listeners: dict[SignalEvent, list[EventCallback]] = {}

        # Connection state
        self._websocket: aiohttp.ClientWebSocketResponse | None = None
        self._connected = False
        self._connection_task: asyncio.Task | None = None
        self._should_reconnect = False

        # Backoff and retry
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._current_backoff = reconnect_delay
        self._consecutive_failures = 0
        self._connection_attempts = 0

        # Statistics
        self._connect_time: float = 0
        self._disconnect_time: float = 0
        self._events_received = 0
        self._events_dispatched = 0
        self._events_dropped = 0
        self._callback_failures = 0

    @property
    def url(self) -> str:
        """Return the signaling endpoint."""
        return self._url

    @property
    def connected(self) -> bool:
        """Return if the WebSocket is connected."""
        return self._connected

    def is_connected(self) -> bool:
        """Return current transport liveness."""
        return self._connected

    @property
    def statistics(self) -> dict[str, Any]:
        """Return event bus statistics."""
        return {
            "connected": self._connected,
            "events_received": self._events_received,
            "events_dispatched": self._events_dispatched,
            "events_dropped": self._events_dropped,
            "callback_failures": self._callback_failures,
            "connection_attempts": self._connection_attempts,
            "consecutive_failures": self._consecutive_failures,
            "current_backoff_s": self._current_backoff,
            "connect_time": self._connect_time,
            "disconnect_time": self._disconnect_time,
            "listeners": {
                event.value: len(callbacks)
                for event, callbacks in self._listeners.items()
            },
        }

    def listener_count(self, event: SignalEvent | str) -> int:
        """Number of callbacks registered for event."""
        return len(self._listeners.get(SignalEvent(event), ()))

    # Listener registration

    def subscribe(
        self, event: SignalEvent | str, callback: EventCallback
    ) -> Callable[[], None]:
        """Register callback for event and return a function that removes it."""
        key = SignalEvent(event)
        self._listeners.setdefault(key, []).append(callback)

        def _remove() -> None:
            self.unsubscribe(key, callback)

        return _remove

    def unsubscribe(
        self, event: SignalEvent | str, callback: EventCallback | None = None
    ) -> None:
        """Remove callback for event, or every callback when none is given."""
        key = SignalEvent(event)
        if callback is None:
            self._listeners.pop(key, None)
            return

        callbacks = self._listeners.get(key)
        if not callbacks:
            return

        # Equality rather than identity so bound methods can be removed
        for index, registered in enumerate(callbacks):
            if registered == callback:
                del callbacks[index]
                break

        if not callbacks:
            del self._listeners[key]

    def _dispatch(self, event: SignalingEvent) -> None:
        """Invoke every callback for event, isolating failures."""
        callbacks = list(self._listeners.get(event.event, ()))
        if not callbacks:
            _LOGGER.debug("No listeners for %s", event.event.value)

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                self._callback_failures += 1
                _LOGGER.exception("Listener for %s raised", event.event.value)

        self._events_dispatched += 1

    def _dispatch_lifecycle(self, event: SignalEvent, **data: Any) -> None:
        self._dispatch(SignalingEvent(event=event, data=data))

    # Connection lifecycle

    async def connect(self) -> None:
        """Start the connection manager unless it is already running."""
        if self._connection_task is not None and not self._connection_task.done():
            return

        _LOGGER.debug("Starting signaling connection to %s", self._url)
        self._should_reconnect = True
        self._consecutive_failures = 0
        self._current_backoff = self._reconnect_delay
        self._connection_task = asyncio.get_running_loop().create_task(
            self._connection_manager()
        )

    async def disconnect(self) -> None:
        """Tear down the connection and forget every listener."""
        _LOGGER.debug("Stopping signaling connection")
        self._should_reconnect = False

        task = self._connection_task
        self._connection_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._close_websocket(reason="client disconnect")
        self._listeners.clear()

    async def send(
        self, event: SignalEvent | str, data: dict[str, Any] | None = None
    ) -> bool:
        """Send an event frame to the server."""
        if not self._connected or self._websocket is None:
            _LOGGER.warning("Signaling not connected, cannot send %s", event)
            return False

        try:
            await self._websocket.send_json({"event": str(event), "data": data or {}})
        except (aiohttp.ClientError, ConnectionError) as err:
            _LOGGER.error("Failed to send %s: %s", event, err)
            return False
        return True

    async def _connection_manager(self) -> None:
        """Keep the connection open with exponential backoff between attempts."""
        while self._should_reconnect:
            try:
                await self._connect()
                self._current_backoff = self._reconnect_delay
                self._consecutive_failures = 0
                await self._listen()

            except EventBusError as err:
                self._consecutive_failures += 1
                self._dispatch_lifecycle(
                    SignalEvent.ERROR,
                    message=str(err),
                    attempt=self._consecutive_failures,
                )
            except Exception as err:
                _LOGGER.exception("Unexpected signaling connection error")
                self._connected = False
                self._websocket = None
                self._consecutive_failures += 1
                self._dispatch_lifecycle(
                    SignalEvent.ERROR,
                    message=str(err),
                    attempt=self._consecutive_failures,
                )

            if not self._should_reconnect:
                break

            if (
                self._max_reconnect_attempts
                and self._consecutive_failures >= self._max_reconnect_attempts
            ):
                _LOGGER.error(
                    "Giving up on %s after %d failed attempts",
                    self._url,
                    self._consecutive_failures,
                )
                self._dispatch_lifecycle(
                    SignalEvent.ERROR,
                    message="Max reconnection attempts reached",
                    attempt=self._consecutive_failures,
                )
                break

            self._connection_attempts += 1
            _LOGGER.debug(
                "Reconnecting in %s seconds (attempt %d)",
                self._current_backoff,
                self._connection_attempts,
            )
            await asyncio.sleep(self._current_backoff)
            self._current_backoff = min(
                self._current_backoff * 2, self._max_reconnect_delay
            )

    async def _connect(self) -> None:
        """Establish the WebSocket connection."""
        if self._connected:
            return

        headers = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        _LOGGER.debug("Connecting to signaling server at %s", self._url)
        try:
            async with asyncio.timeout(self._connect_timeout):
                self._websocket = await self._session.ws_connect(
                    self._url, headers=headers, heartbeat=WEBSOCKET_HEARTBEAT
                )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as err:
            _LOGGER.error("Failed to connect signaling WebSocket: %s", err)
            self._connected = False
            raise EventBusError(f"Connection failed: {err}") from err

        self._connected = True
        self._connect_time = time.time()
        self._disconnect_time = 0
        _LOGGER.info("Signaling connected to %s", self._url)
        self._dispatch_lifecycle(SignalEvent.CONNECT)

    async def _listen(self) -> None:
        """Read frames until the server goes away."""
        websocket = self._websocket
        if websocket is None:
            return

        reason = "closed by server"
        try:
            async for msg in websocket:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = websocket.exception()
                    _LOGGER.error("Signaling WebSocket error: %s", error)
                    self._dispatch_lifecycle(SignalEvent.ERROR, message=str(error))
                    reason = "transport error"
                    break
                elif msg.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.CLOSED,
                ):
                    break
        except aiohttp.ClientError as err:
            _LOGGER.error("Signaling listening error: %s", err)
            self._dispatch_lifecycle(SignalEvent.ERROR, message=str(err))
            reason = "transport error"
        finally:
            await self._close_websocket(reason=reason)

    async def _close_websocket(self, reason: str) -> None:
        """Close the socket and announce the disconnect once."""
        if not self._connected:
            return

        self._connected = False
        self._disconnect_time = time.time()

        websocket, self._websocket = self._websocket, None
        if websocket is not None and not websocket.closed:
            await websocket.close()

        _LOGGER.info("Signaling disconnected (%s)", reason)
        self._dispatch_lifecycle(SignalEvent.DISCONNECT, reason=reason)

    def _handle_message(self, raw: str) -> None:
        """Decode, validate and dispatch one text frame."""
        self._events_received += 1

        try:
            message = json.loads(raw)
        except json.JSONDecodeError as err:
            self._events_dropped += 1
            _LOGGER.warning("Invalid JSON received from signaling server: %s", err)
            return

        if not isinstance(message, dict) or "event" not in message:
            self._events_dropped += 1
            _LOGGER.warning("Signaling frame without event name dropped")
            return

        try:
            event = SignalingEvent.from_json(message)
        except ValueError:
            self._events_dropped += 1
            _LOGGER.debug("Ignoring unknown signaling event %r", message.get("event"))
            return

        if event.event in LIFECYCLE_EVENTS:
            self._events_dropped += 1
            _LOGGER.warning("Server sent reserved event %s, dropped", event.event.value)
            return

        payload = validate_event_payload(event.event, event.data)
        if payload is None:
            self._events_dropped += 1
            return
        event.data = payload

        _LOGGER.debug("[signaling] %s %s", event.event.value, event.call_id or "-")
        self._dispatch(event)
