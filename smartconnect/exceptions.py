"""Base exception for the SmartConnect call-session layer."""

from __future__ import annotations


class SmartConnectError(Exception):
    """Base class for every error raised by this package."""
