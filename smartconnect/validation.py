"""Validation schemas for signaling event payloads."""

from __future__ import annotations

import logging
from typing import Any, Final

import voluptuous as vol

from .const import SignalEvent

_LOGGER = logging.getLogger(__name__)


def _string(value: Any) -> str:
    """Coerce scalar ids and numbers to stripped strings."""
    if isinstance(value, (dict, list, tuple, set)) or value is None:
        raise vol.Invalid("expected a string")
    return str(value).strip()


def _lower_string(value: Any) -> str:
    return _string(value).lower()


def _optional_string(value: Any) -> str | None:
    if value is None:
        return None
    text = _string(value)
    return text or None


def _alias(source: str, target: str):
    """Copy source into target when only the alias is present."""

    def _apply(data: Any) -> Any:
        if not isinstance(data, dict):
            raise vol.Invalid("expected a mapping")
        if target not in data and source in data:
            data = dict(data)
            data[target] = data.pop(source)
        return data

    return _apply


_CALL_ID: Final = vol.All(_string, vol.Length(min=1))

INCOMING_CALL_SCHEMA: Final = vol.All(
    _alias("callSid", "callId"),
    _alias("from", "phone_number"),
    vol.Schema(
        {
            vol.Required("callId"): _CALL_ID,
            vol.Required("phone_number"): vol.All(_string, vol.Length(min=1)),
            vol.Optional("contact_name", default=None): _optional_string,
            vol.Optional("direction", default="incoming"): _lower_string,
            vol.Optional("status", default="ringing"): _lower_string,
        },
        extra=vol.ALLOW_EXTRA,
    ),
)

CALL_INITIATED_SCHEMA: Final = vol.All(
    _alias("callSid", "callId"),
    vol.Schema(
        {
            vol.Required("callId"): _CALL_ID,
            vol.Optional("to", default=""): _string,
            vol.Optional("status", default="initiated"): _lower_string,
        },
        extra=vol.ALLOW_EXTRA,
    ),
)

CALL_STATUS_UPDATE_SCHEMA: Final = vol.All(
    _alias("callSid", "callId"),
    vol.Schema(
        {
            vol.Required("callId"): _CALL_ID,
            vol.Required("status"): _lower_string,
        },
        extra=vol.ALLOW_EXTRA,
    ),
)

CALL_ENDED_SCHEMA: Final = vol.All(
    _alias("callSid", "callId"),
    vol.Schema(
        {
            vol.Optional("callId"): _CALL_ID,
            vol.Optional("reason", default=None): vol.Any(None, _lower_string),
        },
        extra=vol.ALLOW_EXTRA,
    ),
)

CALL_REFERENCE_SCHEMA: Final = vol.All(
    _alias("callSid", "callId"),
    vol.Schema({vol.Required("callId"): _CALL_ID}, extra=vol.ALLOW_EXTRA),
)

EVENT_SCHEMAS: Final[dict[SignalEvent, Any]] = {
    SignalEvent.INCOMING_CALL: INCOMING_CALL_SCHEMA,
    SignalEvent.CALL_INITIATED: CALL_INITIATED_SCHEMA,
    SignalEvent.CALL_STATUS_UPDATE: CALL_STATUS_UPDATE_SCHEMA,
    SignalEvent.CALL_ENDED: CALL_ENDED_SCHEMA,
    SignalEvent.CALL_ACCEPTED: CALL_REFERENCE_SCHEMA,
    SignalEvent.CALL_REJECTED: CALL_REFERENCE_SCHEMA,
}


def validate_event_payload(
    event: SignalEvent, data: dict[str, Any]
) -> dict[str, Any] | None:
    """Return the normalized payload, or None when it fails validation.

    Lifecycle events carry free-form payloads and are passed through.
    """
    schema = EVENT_SCHEMAS.get(event)
    if schema is None:
        return data

    try:
        return schema(data)
    except vol.Invalid as err:
        _LOGGER.warning("Dropping malformed %s payload: %s", event.value, err)
        return None
