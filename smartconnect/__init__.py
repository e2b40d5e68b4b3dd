"""The SmartConnect call-session synchronization layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import aiohttp

from .api_client import CallControlClient
from .config import SmartConnectConfig
from .coordinator import CallSessionStateMachine
from .dialing import DialingContext
from .websocket import EventBus

_LOGGER = logging.getLogger(__name__)


@dataclass
class SmartConnectRuntime:
    """Components wired together for one signaling server."""

    config: SmartConnectConfig
    session: aiohttp.ClientSession
    event_bus: EventBus
    api_client: CallControlClient
    machine: CallSessionStateMachine
    owns_session: bool = field(default=False, repr=False)


async def async_setup(
    config: SmartConnectConfig, session: aiohttp.ClientSession | None = None
) -> SmartConnectRuntime:
    """Build the client components and open the signaling connection.

    When no session is given one is created and closed again by async_unload.
    """
    owns_session = session is None
    if session is None:
        session = aiohttp.ClientSession()

    api_client = CallControlClient(
        session,
        config.api_url,
        token=config.token,
        request_timeout=config.request_timeout,
    )
    event_bus = EventBus(
        session,
        config.websocket_url,
        token=config.token,
        reconnect_delay=config.reconnect_delay,
        max_reconnect_delay=config.max_reconnect_delay,
        max_reconnect_attempts=config.max_reconnect_attempts,
        connect_timeout=config.request_timeout,
    )
    machine = CallSessionStateMachine(
        api_client,
        dialing=DialingContext(config.default_country_code),
        no_answer_timeout=config.no_answer_timeout,
        cleared_display_delay=config.cleared_display_delay,
        auto_reject_second_call=config.auto_reject_second_call,
    )
    machine.attach(event_bus)

    await event_bus.connect()
    _LOGGER.debug("SmartConnect set up for %s", config.websocket_url)

    return SmartConnectRuntime(
        config=config,
        session=session,
        event_bus=event_bus,
        api_client=api_client,
        machine=machine,
        owns_session=owns_session,
    )


async def async_unload(runtime: SmartConnectRuntime) -> None:
    """Stop timers, close the signaling connection and release the session."""
    _LOGGER.debug("Unloading SmartConnect for %s", runtime.config.websocket_url)

    await runtime.machine.async_shutdown()
    await runtime.event_bus.disconnect()

    if runtime.owns_session and not runtime.session.closed:
        await runtime.session.close()
