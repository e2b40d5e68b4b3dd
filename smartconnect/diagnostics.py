"""Diagnostics support for the SmartConnect client."""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .const import is_active_phase

if TYPE_CHECKING:
    from . import SmartConnectRuntime

# Keys to redact from diagnostics for privacy
REDACT_KEYS = {
    "token",
    "counterpart_number",
    "counterpart_name",
    "phone_number",
    "contact_name",
}

REDACTED = "**REDACTED**"


def redact_data(data: Any, to_redact: set[str]) -> Any:
    """Return a copy of data with the values of sensitive keys hidden."""
    if isinstance(data, Mapping):
        return {
            key: (
                REDACTED
                if key in to_redact and value not in (None, "")
                else redact_data(value, to_redact)
            )
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact_data(item, to_redact) for item in data]
    return data


def get_diagnostics(runtime: SmartConnectRuntime) -> dict[str, Any]:
    """Return a JSON-serializable snapshot of the client state."""
    machine = runtime.machine
    session = machine.session

    diagnostics_data = {
        "config": runtime.config.as_dict(),
        "event_bus": runtime.event_bus.statistics,
        "call": {
            "view": machine.view.as_dict(),
            "timer_running": machine.timer.running,
            "created_at": session.created_at if session else None,
            "ended_at": session.ended_at if session else None,
        },
        "summary": get_diagnostic_summary(runtime),
    }

    return redact_data(diagnostics_data, REDACT_KEYS)


def get_diagnostic_summary(runtime: SmartConnectRuntime) -> dict[str, Any]:
    """Get a summary of diagnostic information for quick troubleshooting."""
    stats = runtime.event_bus.statistics
    machine = runtime.machine

    health_factors = {
        "signaling_connected": stats["connected"],
        "no_reconnect_failures": stats["consecutive_failures"] == 0,
        "no_listener_failures": stats["callback_failures"] == 0,
        "no_dropped_events": stats["events_dropped"] == 0,
    }

    health_score = sum(1 for factor in health_factors.values() if factor)
    health_percentage = health_score / len(health_factors) * 100

    return {
        "status": (
            "healthy"
            if health_percentage >= 75
            else "warning" if health_percentage >= 50 else "error"
        ),
        "health_percentage": health_percentage,
        "health_factors": health_factors,
        "quick_stats": {
            "call_state": machine.state.value,
            "call_active": is_active_phase(machine.state),
            "uptime_seconds": (
                round(time.time() - stats["connect_time"])
                if stats["connected"] and stats["connect_time"]
                else None
            ),
            "events_received": stats["events_received"],
        },
        "recommendations": _get_diagnostic_recommendations(stats),
    }


def _get_diagnostic_recommendations(stats: dict[str, Any]) -> list[str]:
    """Get recommendations based on diagnostic data."""
    recommendations = []

    if not stats["connected"]:
        recommendations.append(
            "Signaling is disconnected. Check websocket_url and that the server "
            "is reachable."
        )
    if stats["consecutive_failures"]:
        recommendations.append(
            "Recent connection attempts failed. Verify the token and network."
        )
    if stats["callback_failures"]:
        recommendations.append(
            "A listener raised while handling events. Check the application log."
        )
    if stats["events_dropped"]:
        recommendations.append(
            "Malformed or unknown signaling frames were dropped. The server may "
            "run a different protocol version."
        )

    return recommendations
