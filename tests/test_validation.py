"""Tests for signaling payload validation."""

from __future__ import annotations

from smartconnect.const import SignalEvent
from smartconnect.validation import validate_event_payload


def test_incoming_call_defaults():
    payload = validate_event_payload(
        SignalEvent.INCOMING_CALL, {"callId": "CA1", "phone_number": "+15551230000"}
    )

    assert payload["contact_name"] is None
    assert payload["direction"] == "incoming"
    assert payload["status"] == "ringing"


def test_call_sid_alias_and_numeric_id():
    payload = validate_event_payload(
        SignalEvent.CALL_STATUS_UPDATE, {"callSid": 42, "status": "Answered"}
    )

    assert payload["callId"] == "42"
    assert payload["status"] == "answered"


def test_call_ended_without_id_or_reason():
    payload = validate_event_payload(SignalEvent.CALL_ENDED, {})

    assert payload == {"reason": None}


def test_extra_keys_kept():
    payload = validate_event_payload(
        SignalEvent.CALL_ACCEPTED, {"callId": "CA1", "timestamp": 1}
    )

    assert payload["timestamp"] == 1


def test_invalid_payloads():
    assert (
        validate_event_payload(SignalEvent.CALL_STATUS_UPDATE, {"callId": "CA1"})
        is None
    )
    assert validate_event_payload(SignalEvent.CALL_REJECTED, {"callId": ""}) is None
    assert (
        validate_event_payload(
            SignalEvent.INCOMING_CALL, {"callId": {"nested": 1}, "phone_number": "1"}
        )
        is None
    )


def test_lifecycle_payload_passed_through():
    data = {"reason": "closed by server"}

    assert validate_event_payload(SignalEvent.DISCONNECT, data) is data


def test_incoming_call_requires_number():
    assert (
        validate_event_payload(
            SignalEvent.INCOMING_CALL, {"callId": "CA1", "phone_number": "  "}
        )
        is None
    )
