"""Shared test fixtures and configuration."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from smartconnect.api_client import DialResult
from smartconnect.coordinator import CallSessionStateMachine
from smartconnect.websocket import EventBus

# Short timings for state machine tests
NO_ANSWER_TIMEOUT = 0.2
CLEARED_DISPLAY_DELAY = 0.15


@pytest.fixture
def api_client():
    """Control plane double; every request succeeds by default."""
    client = AsyncMock()
    client.dial.return_value = DialResult(call_id="CA100", status="initiated")
    client.accept.return_value = None
    client.reject.return_value = None
    client.hangup.return_value = None
    return client


@pytest.fixture
def event_bus():
    """EventBus that is never connected; frames are fed in directly."""
    return EventBus(MagicMock(), "ws://signaling.test/ws")


@pytest.fixture
def emit(event_bus):
    """Feed one JSON text frame into the event bus."""

    def _emit(event: str, data: dict[str, Any] | None = None) -> None:
        event_bus._handle_message(json.dumps({"event": event, "data": data or {}}))

    return _emit


@pytest_asyncio.fixture
async def machine(api_client, event_bus):
    """State machine attached to the test event bus.

    The call timer uses a long interval so tests drive ticks by hand.
    """
    state_machine = CallSessionStateMachine(
        api_client,
        no_answer_timeout=NO_ANSWER_TIMEOUT,
        cleared_display_delay=CLEARED_DISPLAY_DELAY,
        timer_interval=60,
    )
    state_machine.attach(event_bus)
    yield state_machine
    await state_machine.async_shutdown()


@pytest.fixture
def views(machine):
    """Every view published by the machine, in order."""
    published = []
    machine.add_view_listener(published.append)
    return published

