"""Call session state machine for the SmartConnect client."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Coroutine
from typing import Any, Callable, TypeVar

from .api_client import CallControlClient, CallControlError
from .const import (
    CALL_TIMER_INTERVAL,
    CLEARED_DISPLAY_DELAY,
    NO_ANSWER_TIMEOUT,
    STATUS_TRANSITIONS,
    CallDirection,
    CallPhase,
    ControlAction,
    EndReason,
    SignalEvent,
    is_forward_transition,
)
from .dialing import DialingContext
from .exceptions import SmartConnectError
from .models import IDLE_VIEW, CallSession, CallView, SecondCallNotice, SignalingEvent
from .timer import CallTimer, format_duration
from .websocket import EventBus

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")

ViewListener = Callable[[CallView], None]
SecondCallListener = Callable[[SecondCallNotice], None]

# Events that may arrive before the dial request has been answered
_EARLY_DIAL_EVENTS = frozenset(
    {
        SignalEvent.CALL_INITIATED,
        SignalEvent.CALL_STATUS_UPDATE,
        SignalEvent.CALL_ENDED,
        SignalEvent.CALL_ACCEPTED,
        SignalEvent.CALL_REJECTED,
    }
)


class CallStateError(SmartConnectError):
    """A local action was requested in a state that does not allow it."""


class ProtocolViolation(SmartConnectError):
    """An inbound event cannot be applied in the current state."""


class CallSessionStateMachine:
    """Reconcile signaling events, control responses and timers into one call state."""

    def __init__(
        self,
        api_client: CallControlClient,
        *,
        dialing: DialingContext | None = None,
        no_answer_timeout: float = NO_ANSWER_TIMEOUT,
        cleared_display_delay: float = CLEARED_DISPLAY_DELAY,
        auto_reject_second_call: bool = True,
        timer_interval: float = CALL_TIMER_INTERVAL,
    ) -> None:
        """Initialize the state machine."""
        self.api_client = api_client
        self.dialing = dialing or DialingContext()
        self.timer = CallTimer(on_tick=self._handle_timer_tick, interval=timer_interval)

        self._no_answer_timeout = no_answer_timeout
        self._cleared_display_delay = cleared_display_delay
        self._auto_reject_second_call = auto_reject_second_call

        # Session state
        self._session: CallSession | None = None
        self._control_lock: asyncio.Lock | None = None
        self._dial_in_flight = False
        self._hangup_after_dial = False
        self._early_events: list[SignalingEvent] = []

        # Scheduled work
        self._no_answer_handle: asyncio.TimerHandle | None = None
        self._clear_handle: asyncio.TimerHandle | None = None
        self._background_tasks: set[asyncio.Task] = set()

        # Presentation layer listeners
        self._view_listeners: list[ViewListener] = []
        self._cleared_listeners: list[ViewListener] = []
        self._second_call_listeners: list[SecondCallListener] = []

        # Event bus wiring
        self._event_bus: EventBus | None = None
        self._unsubscribers: list[Callable[[], None]] = []
        self._event_handlers: dict[SignalEvent, Callable[[SignalingEvent], None]] = {
            SignalEvent.INCOMING_CALL: self._handle_incoming_call,
            SignalEvent.CALL_INITIATED: self._handle_call_initiated,
            SignalEvent.CALL_STATUS_UPDATE: self._handle_status_update,
            SignalEvent.CALL_ENDED: self._handle_call_ended,
            SignalEvent.CALL_ACCEPTED: self._handle_call_accepted,
            SignalEvent.CALL_REJECTED: self._handle_call_rejected,
        }

    # Read side

    @property
    def session(self) -> CallSession | None:
        """The current call session, if any."""
        return self._session

    @property
    def state(self) -> CallPhase:
        """Current state, idle when no session exists."""
        if self._session is None:
            return CallPhase.IDLE
        return self._session.phase

    @property
    def view(self) -> CallView:
        """Projection of the current session for the presentation layer."""
        session = self._session
        if session is None:
            return IDLE_VIEW

        duration = self.timer.elapsed_seconds if session.connected_at is not None else 0
        return CallView(
            phase=session.phase,
            counterpart_number=session.counterpart_number,
            counterpart_name=session.counterpart_name,
            direction=session.direction,
            call_id=session.id,
            end_reason=session.end_reason,
            duration_seconds=duration,
            formatted_duration=format_duration(duration),
            pending_action=session.pending_action,
            connected_at=session.connected_at,
        )

    # Listener registration

    def add_view_listener(self, callback: ViewListener) -> Callable[[], None]:
        """Call callback with the new view after every change."""
        return self._add_listener(self._view_listeners, callback)

    def add_cleared_listener(self, callback: ViewListener) -> Callable[[], None]:
        """Call callback with the final view when an ended session is cleared."""
        return self._add_listener(self._cleared_listeners, callback)

    def add_second_call_listener(
        self, callback: SecondCallListener
    ) -> Callable[[], None]:
        """Call callback when an incoming call arrives while another is present."""
        return self._add_listener(self._second_call_listeners, callback)

    @staticmethod
    def _add_listener(listeners: list, callback: Callable) -> Callable[[], None]:
        listeners.append(callback)

        def _remove() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return _remove

    @staticmethod
    def _notify(listeners: list, value: Any) -> None:
        for callback in list(listeners):
            try:
                callback(value)
            except Exception:
                _LOGGER.exception("Call state listener raised")

    def _notify_view(self) -> None:
        self._notify(self._view_listeners, self.view)

    # Event bus wiring

    def attach(self, event_bus: EventBus) -> None:
        """Subscribe to signaling events on event_bus, replacing earlier wiring."""
        self.detach()

        self._event_bus = event_bus
        for event in self._event_handlers:
            self._unsubscribers.append(
                event_bus.subscribe(event, self._handle_signaling_event)
            )
        for event in (SignalEvent.CONNECT, SignalEvent.DISCONNECT, SignalEvent.ERROR):
            self._unsubscribers.append(
                event_bus.subscribe(event, self._handle_connection_event)
            )

    def detach(self) -> None:
        """Remove every subscription made by attach."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._event_bus = None

    # Local actions

    async def dial(self, number: str) -> CallView:
        """Start an outgoing call.

        Raises ValidationError for an unusable number, NetworkError when the
        control plane cannot be reached and CallStateError when a call exists.
        """
        if self._session is not None or self._dial_in_flight:
            raise CallStateError(f"Cannot dial while call is {self.state.value}")

        target = self.dialing.canonicalize(number)

        self._dial_in_flight = True
        self._hangup_after_dial = False
        try:
            result = await self.api_client.dial(target)
        except CallControlError:
            self._early_events.clear()
            self._hangup_after_dial = False
            raise
        finally:
            self._dial_in_flight = False

        session = CallSession(
            direction=CallDirection.OUTGOING,
            counterpart_number=target,
            phase=CallPhase.DIALING,
            id=result.call_id,
        )
        self._start_session(session)

        transition = STATUS_TRANSITIONS.get(result.status)
        if transition is not None:
            self._apply_phase(session, *transition)

        early_events, self._early_events = self._early_events, []
        for event in early_events:
            if session.matches(event.call_id):
                self._handle_signaling_event(event)

        if self._hangup_after_dial:
            self._hangup_after_dial = False
            if session.is_active:
                _LOGGER.info("Ending call %s hung up while dialing", session.id)
                self._end_session(session, EndReason.LOCAL_HANGUP)
                await self._send_hangup(session)

        return self.view

    async def accept(self) -> None:
        """Answer the ringing incoming call.

        On failure the call stays ringing and the error is raised.
        """
        session = self._require_incoming_ringing(ControlAction.ACCEPT)

        async with self._lock_for(session):
            if not self._is_current(session, CallPhase.RINGING):
                _LOGGER.debug("Accept skipped, call %s not ringing", session.id)
                return

            try:
                await self._run_control(
                    session, ControlAction.ACCEPT, self.api_client.accept(session.id)
                )
            except CallControlError as err:
                if self._is_current(session, CallPhase.RINGING):
                    raise
                _LOGGER.debug("Late accept failure for %s: %s", session.id, err)
                return

            if not self._is_current(session, CallPhase.RINGING):
                _LOGGER.debug("Late accept response for %s ignored", session.id)
                return

            self._enter_connected(session)

    async def reject(self) -> None:
        """Decline the ringing incoming call.

        The call ends locally whatever the control plane answers.
        """
        session = self._require_incoming_ringing(ControlAction.REJECT)

        async with self._lock_for(session):
            if not self._is_current(session, CallPhase.RINGING):
                _LOGGER.debug("Reject skipped, call %s not ringing", session.id)
                return

            try:
                await self._run_control(
                    session, ControlAction.REJECT, self.api_client.reject(session.id)
                )
            except CallControlError as err:
                _LOGGER.warning("Reject request for %s failed: %s", session.id, err)

            if self._is_current(session):
                self._end_session(session, EndReason.REJECTED)

    async def hangup(self) -> None:
        """End the current call immediately and notify the server."""
        session = self._session
        if session is None and self._dial_in_flight:
            # Applied once the dial response creates the session
            _LOGGER.debug("Hangup requested while dial is in flight")
            self._hangup_after_dial = True
            return
        if session is None or not session.is_active:
            _LOGGER.debug("Hangup ignored, no active call")
            return

        self._end_session(session, EndReason.LOCAL_HANGUP)
        await self._send_hangup(session)

    async def reject_second_call(self, call_id: str) -> None:
        """Reject a call reported through a second call notice."""
        if self._session is not None and self._session.id == call_id:
            raise CallStateError("Use reject() for the current call")
        try:
            await self.api_client.reject(call_id)
        except CallControlError as err:
            _LOGGER.warning("Rejecting second call %s failed: %s", call_id, err)

    def set_counterpart_name(self, name: str | None) -> None:
        """Attach a display name resolved by the presentation layer."""
        if self._session is None:
            return
        if self._session.counterpart_name != name:
            self._session.counterpart_name = name
            self._notify_view()

    def _require_incoming_ringing(self, action: ControlAction) -> CallSession:
        session = self._session
        if session is None or session.phase is not CallPhase.RINGING:
            raise CallStateError(
                f"Cannot {action.value} while call is {self.state.value}"
            )
        if session.direction is not CallDirection.INCOMING:
            raise CallStateError(f"Cannot {action.value} an outgoing call")
        return session

    def _lock_for(self, session: CallSession) -> asyncio.Lock:
        if self._control_lock is None or session is not self._session:
            # Session already discarded, nothing left to serialize against
            return asyncio.Lock()
        return self._control_lock

    def _is_current(self, session: CallSession, *phases: CallPhase) -> bool:
        if session is not self._session:
            return False
        return not phases or session.phase in phases

    async def _run_control(
        self,
        session: CallSession,
        action: ControlAction,
        request: Coroutine[Any, Any, _T],
    ) -> _T:
        """Await a control request while exposing it as the pending action."""
        session.pending_action = action
        if self._is_current(session):
            self._notify_view()
        try:
            return await request
        finally:
            if session.pending_action is action:
                session.pending_action = None
                if self._is_current(session):
                    self._notify_view()

    async def _send_hangup(self, session: CallSession) -> None:
        if not session.id:
            _LOGGER.warning(
                "Call ended (%s) before a server id was known, hangup kept local",
                session.end_reason,
            )
            return

        async with self._lock_for(session):
            try:
                await self._run_control(
                    session, ControlAction.HANGUP, self.api_client.hangup(session.id)
                )
            except CallControlError as err:
                _LOGGER.warning("Hangup request for %s failed: %s", session.id, err)

    # Inbound events

    def _handle_signaling_event(self, event: SignalingEvent) -> None:
        """Route a call event, skipping it when it cannot be applied."""
        if (
            self._session is None
            and self._dial_in_flight
            and event.event in _EARLY_DIAL_EVENTS
        ):
            _LOGGER.debug("Holding %s until dial completes", event.event.value)
            self._early_events.append(event)
            return

        handler = self._event_handlers.get(event.event)
        if handler is None:
            return

        try:
            handler(event)
        except ProtocolViolation as err:
            _LOGGER.warning("Skipping %s: %s", event.event.value, err)

    def _handle_connection_event(self, event: SignalingEvent) -> None:
        if event.event is SignalEvent.CONNECT:
            _LOGGER.info("Signaling connected (call state: %s)", self.state.value)
        elif event.event is SignalEvent.DISCONNECT:
            _LOGGER.warning(
                "Signaling disconnected (%s), keeping call state %s",
                event.data.get("reason", "unknown"),
                self.state.value,
            )
        else:
            _LOGGER.warning("Signaling error: %s", event.data.get("message"))

    def _session_for(self, event: SignalingEvent) -> CallSession:
        session = self._session
        if session is None:
            raise ProtocolViolation("no call session")
        if not session.matches(event.call_id):
            raise ProtocolViolation(
                f"call {event.call_id} does not match current call {session.id}"
            )
        return session

    def _handle_incoming_call(self, event: SignalingEvent) -> None:
        data = event.data
        call_id = data["callId"]

        if self._session is not None and self._session.id == call_id:
            _LOGGER.debug("Duplicate incoming call event for %s", call_id)
            return

        if self._session is not None or self._dial_in_flight:
            self._handle_second_call(data)
            return

        self._start_session(
            CallSession(
                direction=CallDirection.INCOMING,
                counterpart_number=data["phone_number"],
                counterpart_name=data.get("contact_name"),
                phase=CallPhase.RINGING,
                id=call_id,
            )
        )

    def _handle_second_call(self, data: dict[str, Any]) -> None:
        notice = SecondCallNotice(
            call_id=data["callId"],
            counterpart_number=data["phone_number"],
            counterpart_name=data.get("contact_name"),
            auto_rejected=self._auto_reject_second_call,
        )
        _LOGGER.warning(
            "Incoming call %s while call is %s (auto reject: %s)",
            notice.call_id,
            self.state.value,
            notice.auto_rejected,
        )
        self._notify(self._second_call_listeners, notice)

        if notice.auto_rejected:
            self._spawn(self.reject_second_call(notice.call_id))

    def _handle_call_initiated(self, event: SignalingEvent) -> None:
        session = self._session_for(event)
        if session.direction is not CallDirection.OUTGOING:
            raise ProtocolViolation("call initiated for an incoming call")

        if session.id is None:
            session.id = event.call_id
            _LOGGER.debug("Call id %s assigned to outgoing call", session.id)
            self._notify_view()

    def _handle_status_update(self, event: SignalingEvent) -> None:
        session = self._session_for(event)
        status = event.data["status"]

        transition = STATUS_TRANSITIONS.get(status)
        if transition is None:
            raise ProtocolViolation(f"unknown call status {status!r}")

        self._apply_phase(session, *transition)

    def _handle_call_ended(self, event: SignalingEvent) -> None:
        session = self._session_for(event)
        reason = event.data.get("reason")
        try:
            end_reason = EndReason(reason) if reason else EndReason.COMPLETED
        except ValueError:
            _LOGGER.debug("Unknown end reason %r, using completed", reason)
            end_reason = EndReason.COMPLETED

        self._apply_phase(session, CallPhase.ENDED, end_reason)

    def _handle_call_accepted(self, event: SignalingEvent) -> None:
        self._apply_phase(self._session_for(event), CallPhase.CONNECTED, None)

    def _handle_call_rejected(self, event: SignalingEvent) -> None:
        self._apply_phase(self._session_for(event), CallPhase.ENDED, EndReason.REJECTED)

    # Transitions

    def _start_session(self, session: CallSession) -> None:
        self._cancel_clear()
        self.timer.reset()
        self._session = session
        self._control_lock = asyncio.Lock()
        _LOGGER.info(
            "Call %s (%s) %s: %s",
            session.id or "-",
            session.direction.value,
            session.phase.value,
            session.counterpart_number,
        )
        self._arm_no_answer(session)
        self._notify_view()

    def _apply_phase(
        self, session: CallSession, phase: CallPhase, reason: EndReason | None
    ) -> None:
        """Move session forward to phase, ignoring duplicates and regressions."""
        if phase is session.phase:
            _LOGGER.debug("Call %s already %s", session.id, phase.value)
            return

        if not is_forward_transition(session.phase, phase):
            _LOGGER.warning(
                "Ignoring %s -> %s for call %s",
                session.phase.value,
                phase.value,
                session.id,
            )
            return

        if phase is CallPhase.ENDED:
            self._end_session(session, reason or EndReason.COMPLETED)
        elif phase is CallPhase.CONNECTED:
            self._enter_connected(session)
        else:
            session.phase = phase
            self._arm_no_answer(session)
            self._notify_view()

    def _enter_connected(self, session: CallSession) -> None:
        self._cancel_no_answer()
        session.phase = CallPhase.CONNECTED
        if session.connected_at is None:
            session.connected_at = time.time()
        if not self.timer.running:
            self.timer.start()
        _LOGGER.info("Call %s connected", session.id)
        self._notify_view()

    def _end_session(self, session: CallSession, reason: EndReason) -> None:
        if session.phase is CallPhase.ENDED:
            return

        self.timer.stop()
        self._cancel_no_answer()
        session.phase = CallPhase.ENDED
        session.end_reason = reason
        session.ended_at = time.time()
        _LOGGER.info(
            "Call %s ended (%s) after %s",
            session.id,
            reason.value,
            self.timer.formatted(),
        )
        self._notify_view()
        self._schedule_clear(session)

    def _clear_session(self, session: CallSession) -> None:
        self._clear_handle = None
        if session is not self._session:
            return

        final_view = self.view
        self._session = None
        self._control_lock = None
        self.timer.reset()
        _LOGGER.debug("Call %s cleared", session.id)
        self._notify(self._cleared_listeners, final_view)
        self._notify_view()

    # Scheduled work

    def _arm_no_answer(self, session: CallSession) -> None:
        self._cancel_no_answer()
        if session.phase not in (CallPhase.DIALING, CallPhase.RINGING):
            return
        self._no_answer_handle = asyncio.get_running_loop().call_later(
            self._no_answer_timeout, self._handle_no_answer_timeout, session
        )

    def _cancel_no_answer(self) -> None:
        if self._no_answer_handle is not None:
            self._no_answer_handle.cancel()
            self._no_answer_handle = None

    def _handle_no_answer_timeout(self, session: CallSession) -> None:
        self._no_answer_handle = None
        if not self._is_current(session, CallPhase.DIALING, CallPhase.RINGING):
            return

        _LOGGER.info(
            "No answer for call %s after %s seconds",
            session.id,
            self._no_answer_timeout,
        )
        self._end_session(session, EndReason.LOCAL_TIMEOUT)
        self._spawn(self._send_hangup(session))

    def _schedule_clear(self, session: CallSession) -> None:
        self._cancel_clear()
        self._clear_handle = asyncio.get_running_loop().call_later(
            self._cleared_display_delay, self._clear_session, session
        )

    def _cancel_clear(self) -> None:
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None

    def _handle_timer_tick(self, elapsed: int) -> None:
        if self._session is not None and self._session.phase is CallPhase.CONNECTED:
            self._notify_view()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def async_shutdown(self) -> None:
        """Cancel timers and background requests and stop listening."""
        self.detach()
        self.timer.stop()
        self._cancel_no_answer()
        self._cancel_clear()

        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks.clear()
