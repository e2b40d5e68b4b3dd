"""Constants for the SmartConnect call-session layer."""

from enum import StrEnum
from typing import Final

# Network configuration
DEFAULT_API_URL: Final = "http://localhost:3000/api"
DEFAULT_WEBSOCKET_URL: Final = "ws://localhost:3000/ws"

# Timing constants (seconds)
DEFAULT_REQUEST_TIMEOUT: Final = 10.0
WEBSOCKET_RECONNECT_DELAY: Final = 2.0
WEBSOCKET_MAX_BACKOFF: Final = 60.0
WEBSOCKET_MAX_RECONNECT_ATTEMPTS: Final = 5
WEBSOCKET_HEARTBEAT: Final = 30.0
NO_ANSWER_TIMEOUT: Final = 30.0
CLEARED_DISPLAY_DELAY: Final = 2.0
CALL_TIMER_INTERVAL: Final = 1.0

# API endpoints (relative to api_url)
API_CALL_MAKE: Final = "/calls/make"
API_CALL_ACCEPT: Final = "/calls/accept/{call_id}"
API_CALL_REJECT: Final = "/calls/reject/{call_id}"
API_CALL_HANGUP: Final = "/calls/hangup/{call_id}"

# Dial target validation (E.164)
PHONE_NUMBER_PATTERN: Final = r"^\+?[1-9]\d{1,14}$"


class SignalEvent(StrEnum):
    """Event names delivered over the signaling connection."""

    CONNECT = "connect"
    DISCONNECT = "disconnect"
    ERROR = "error"
    INCOMING_CALL = "incomingCall"
    CALL_INITIATED = "callInitiated"
    CALL_STATUS_UPDATE = "callStatusUpdate"
    CALL_ENDED = "callEnded"
    CALL_ACCEPTED = "callAccepted"
    CALL_REJECTED = "callRejected"


LIFECYCLE_EVENTS: Final = frozenset(
    {SignalEvent.CONNECT, SignalEvent.DISCONNECT, SignalEvent.ERROR}
)


class CallDirection(StrEnum):
    """Call direction values."""

    OUTGOING = "outgoing"
    INCOMING = "incoming"


class CallPhase(StrEnum):
    """Lifecycle phase of the current call as seen by the presentation layer."""

    IDLE = "idle"
    DIALING = "dialing"
    RINGING = "ringing"
    CONNECTED = "connected"
    ENDED = "ended"


class EndReason(StrEnum):
    """Why a call session ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    REJECTED = "rejected"
    LOCAL_TIMEOUT = "local-timeout"
    LOCAL_HANGUP = "local-hangup"


class ControlAction(StrEnum):
    """Local control actions that may be in flight for a session."""

    ACCEPT = "accept"
    REJECT = "reject"
    HANGUP = "hangup"


# Phases only ever move forward through this ordering
PHASE_ORDER: Final = {
    CallPhase.IDLE: 0,
    CallPhase.DIALING: 1,
    CallPhase.RINGING: 2,
    CallPhase.CONNECTED: 3,
    CallPhase.ENDED: 4,
}

ACTIVE_PHASES: Final = frozenset(
    {CallPhase.DIALING, CallPhase.RINGING, CallPhase.CONNECTED}
)

# Server call status -> (phase, end reason)
STATUS_TRANSITIONS: Final[dict[str, tuple[CallPhase, EndReason | None]]] = {
    "initiated": (CallPhase.DIALING, None),
    "ringing": (CallPhase.RINGING, None),
    "answered": (CallPhase.CONNECTED, None),
    "in-progress": (CallPhase.CONNECTED, None),
    "completed": (CallPhase.ENDED, EndReason.COMPLETED),
    "failed": (CallPhase.ENDED, EndReason.FAILED),
    "busy": (CallPhase.ENDED, EndReason.BUSY),
    "no-answer": (CallPhase.ENDED, EndReason.NO_ANSWER),
}


def is_active_phase(phase: CallPhase) -> bool:
    """Check if the phase belongs to a live call."""
    return phase in ACTIVE_PHASES


def is_forward_transition(current: CallPhase, target: CallPhase) -> bool:
    """Check if moving from current to target respects the phase ordering."""
    return PHASE_ORDER[target] > PHASE_ORDER[current]
