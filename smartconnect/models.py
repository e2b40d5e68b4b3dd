"""Data models for the SmartConnect call-session layer."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from .const import (
    CallDirection,
    CallPhase,
    ControlAction,
    EndReason,
    SignalEvent,
)


@dataclass
class CallSession:
    """The single authoritative record of one call known to the client."""

    direction: CallDirection
    counterpart_number: str
    phase: CallPhase
    id: str | None = None
    counterpart_name: str | None = None
    end_reason: EndReason | None = None
    connected_at: float | None = None
    created_at: float = field(default_factory=time.time)
    ended_at: float | None = None
    pending_action: ControlAction | None = None

    def __post_init__(self) -> None:
        """Validate the phase/end-reason pairing."""
        if self.phase is CallPhase.IDLE:
            raise ValueError("A call session cannot be idle")
        if (self.end_reason is None) != (self.phase is not CallPhase.ENDED):
            raise ValueError("end_reason must be set if and only if phase is ended")

    @property
    def is_active(self) -> bool:
        """True while the call is dialing, ringing or connected."""
        return self.phase is not CallPhase.ENDED

    def matches(self, call_id: str | None) -> bool:
        """Return True when call_id refers to this session.

        A session that has not yet been assigned an id accepts any id.
        """
        if not call_id or not self.id:
            return True
        return self.id == call_id


@dataclass(frozen=True, slots=True)
class CallView:
    """Read-only projection of the current call for the presentation layer."""

    phase: CallPhase = CallPhase.IDLE
    counterpart_number: str = ""
    counterpart_name: str | None = None
    direction: CallDirection | None = None
    call_id: str | None = None
    end_reason: EndReason | None = None
    duration_seconds: int = 0
    formatted_duration: str = "00:00"
    pending_action: ControlAction | None = None
    connected_at: float | None = None

    @property
    def is_idle(self) -> bool:
        """True when no call session exists."""
        return self.phase is CallPhase.IDLE

    def as_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "phase": self.phase.value,
            "counterpart_number": self.counterpart_number,
            "counterpart_name": self.counterpart_name,
            "direction": self.direction.value if self.direction else None,
            "call_id": self.call_id,
            "end_reason": self.end_reason.value if self.end_reason else None,
            "duration_seconds": self.duration_seconds,
            "formatted_duration": self.formatted_duration,
            "pending_action": (
                self.pending_action.value if self.pending_action else None
            ),
            "connected_at": self.connected_at,
        }


IDLE_VIEW = CallView()


@dataclass(frozen=True, slots=True)
class SecondCallNotice:
    """An incoming call that arrived while another session was present."""

    call_id: str
    counterpart_number: str
    counterpart_name: str | None = None
    auto_rejected: bool = False


@dataclass
class SignalingEvent:
    """A decoded frame received over the signaling connection."""

    event: SignalEvent
    data: dict[str, Any] = field(default_factory=dict)
    received_at: float = field(default_factory=time.time)

    @property
    def call_id(self) -> str | None:
        """Call id carried by the payload, if any."""
        value = self.data.get("callId")
        return str(value) if value else None

    @classmethod
    def from_json(cls, message: dict[str, Any]) -> SignalingEvent:
        """Create an event from a decoded `{"event", "data"}` frame.

        Raises ValueError when the event name is not part of the vocabulary.
        """
        event = SignalEvent(message.get("event", ""))
        data = message.get("data")
        return cls(event=event, data=dict(data) if isinstance(data, dict) else {})
