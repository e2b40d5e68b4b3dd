"""Dial target normalization and validation."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .api_client import ValidationError
from .const import PHONE_NUMBER_PATTERN

_FORMATTING_CHARS = {" ", "-", "(", ")", ".", "/", "\t", "\r", "\n"}
_PHONE_NUMBER_RE = re.compile(PHONE_NUMBER_PATTERN)


def _strip_formatting(value: str) -> str:
    """Remove formatting characters while preserving a leading plus and digits.

    Raises ValidationError on any other character.
    """
    result: list[str] = []
    for char in value:
        if char in _FORMATTING_CHARS:
            continue
        if char == "+" and not result:
            result.append(char)
            continue
        if char.isdigit() and char.isascii():
            result.append(char)
            continue
        raise ValidationError(f"Invalid character {char!r} in phone number")
    return "".join(result)


def sanitize_country_code(value: str | None) -> str:
    """Return the country calling code as digits only, without leading zeros."""
    if not value:
        return ""
    return "".join(ch for ch in str(value) if ch.isdigit()).lstrip("0")


def is_valid_phone_number(value: str | None) -> bool:
    """Check value against the E.164-style pattern accepted by the server."""
    return bool(value) and _PHONE_NUMBER_RE.match(value) is not None


def canonicalize_dial_target(
    raw_number: str | None, default_country_code: str | None = None
) -> str:
    """Return the number to send to the control plane.

    International prefixes (``00``) become ``+`` and national numbers with a
    trunk ``0`` are qualified with the default country code when one is set.
    """
    if raw_number is None or not str(raw_number).strip():
        raise ValidationError("Number cannot be empty")

    cleaned = _strip_formatting(str(raw_number).strip())
    if not cleaned or cleaned == "+":
        raise ValidationError("Number cannot be empty")

    country_code = sanitize_country_code(default_country_code)

    if cleaned.startswith("00") and len(cleaned) > 2:
        cleaned = f"+{cleaned[2:]}"
    elif country_code and cleaned.startswith("0") and len(cleaned) > 1:
        cleaned = f"+{country_code}{cleaned[1:]}"

    if not is_valid_phone_number(cleaned):
        raise ValidationError(f"Invalid phone number: {raw_number}")

    return cleaned


@dataclass(frozen=True, slots=True)
class DialingContext:
    """Dialing defaults applied to user-entered numbers."""

    default_country_code: str = ""

    @property
    def has_default(self) -> bool:
        return bool(sanitize_country_code(self.default_country_code))

    def canonicalize(self, number: str | None) -> str:
        """Return a control-plane ready number or raise ValidationError."""
        return canonicalize_dial_target(number, self.default_country_code)
