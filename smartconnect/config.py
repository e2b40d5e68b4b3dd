"""Configuration loading for the SmartConnect client."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Final

import voluptuous as vol
import yaml

from .const import (
    CLEARED_DISPLAY_DELAY,
    DEFAULT_API_URL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_WEBSOCKET_URL,
    NO_ANSWER_TIMEOUT,
    WEBSOCKET_MAX_BACKOFF,
    WEBSOCKET_MAX_RECONNECT_ATTEMPTS,
    WEBSOCKET_RECONNECT_DELAY,
)
from .dialing import sanitize_country_code
from .exceptions import SmartConnectError

_LOGGER = logging.getLogger(__name__)

CONF_API_URL: Final = "api_url"
CONF_WEBSOCKET_URL: Final = "websocket_url"
CONF_TOKEN: Final = "token"
CONF_REQUEST_TIMEOUT: Final = "request_timeout"
CONF_RECONNECT_DELAY: Final = "reconnect_delay"
CONF_MAX_RECONNECT_DELAY: Final = "max_reconnect_delay"
CONF_MAX_RECONNECT_ATTEMPTS: Final = "max_reconnect_attempts"
CONF_NO_ANSWER_TIMEOUT: Final = "no_answer_timeout"
CONF_CLEARED_DISPLAY_DELAY: Final = "cleared_display_delay"
CONF_AUTO_REJECT_SECOND_CALL: Final = "auto_reject_second_call"
CONF_DEFAULT_COUNTRY_CODE: Final = "default_country_code"


class ConfigError(SmartConnectError):
    """Configuration could not be read or failed validation."""


def _url(schemes: tuple[str, ...]):
    def _validate(value: Any) -> str:
        text = vol.Coerce(str)(value).strip().rstrip("/")
        if not text.startswith(tuple(f"{scheme}://" for scheme in schemes)):
            raise vol.Invalid(f"expected a {'/'.join(schemes)} URL")
        return text

    return _validate


_POSITIVE_SECONDS = vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False))

CONFIG_SCHEMA: Final = vol.Schema(
    {
        vol.Optional(CONF_API_URL, default=DEFAULT_API_URL): _url(("http", "https")),
        vol.Optional(CONF_WEBSOCKET_URL, default=DEFAULT_WEBSOCKET_URL): _url(
            ("ws", "wss")
        ),
        vol.Optional(CONF_TOKEN, default=None): vol.Any(None, vol.Coerce(str)),
        vol.Optional(
            CONF_REQUEST_TIMEOUT, default=DEFAULT_REQUEST_TIMEOUT
        ): _POSITIVE_SECONDS,
        vol.Optional(
            CONF_RECONNECT_DELAY, default=WEBSOCKET_RECONNECT_DELAY
        ): _POSITIVE_SECONDS,
        vol.Optional(
            CONF_MAX_RECONNECT_DELAY, default=WEBSOCKET_MAX_BACKOFF
        ): _POSITIVE_SECONDS,
        vol.Optional(
            CONF_MAX_RECONNECT_ATTEMPTS, default=WEBSOCKET_MAX_RECONNECT_ATTEMPTS
        ): vol.All(vol.Coerce(int), vol.Range(min=0)),
        vol.Optional(
            CONF_NO_ANSWER_TIMEOUT, default=NO_ANSWER_TIMEOUT
        ): _POSITIVE_SECONDS,
        vol.Optional(
            CONF_CLEARED_DISPLAY_DELAY, default=CLEARED_DISPLAY_DELAY
        ): vol.All(vol.Coerce(float), vol.Range(min=0)),
        vol.Optional(CONF_AUTO_REJECT_SECOND_CALL, default=True): vol.Boolean(),
        vol.Optional(CONF_DEFAULT_COUNTRY_CODE, default=""): vol.All(
            vol.Any(None, vol.Coerce(str)), sanitize_country_code
        ),
    }
)


@dataclass(frozen=True, slots=True)
class SmartConnectConfig:
    """Validated client settings."""

    api_url: str = DEFAULT_API_URL
    websocket_url: str = DEFAULT_WEBSOCKET_URL
    token: str | None = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    reconnect_delay: float = WEBSOCKET_RECONNECT_DELAY
    max_reconnect_delay: float = WEBSOCKET_MAX_BACKOFF
    max_reconnect_attempts: int = WEBSOCKET_MAX_RECONNECT_ATTEMPTS
    no_answer_timeout: float = NO_ANSWER_TIMEOUT
    cleared_display_delay: float = CLEARED_DISPLAY_DELAY
    auto_reject_second_call: bool = True
    default_country_code: str = ""

    def as_dict(self) -> dict[str, Any]:
        """Return the settings as a plain mapping."""
        return asdict(self)


def config_from_dict(data: dict[str, Any] | None) -> SmartConnectConfig:
    """Validate a mapping and build the client settings."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    try:
        validated = CONFIG_SCHEMA(data)
    except vol.Invalid as err:
        raise ConfigError(f"Invalid configuration: {err}") from err

    if validated[CONF_MAX_RECONNECT_DELAY] < validated[CONF_RECONNECT_DELAY]:
        raise ConfigError("max_reconnect_delay must not be below reconnect_delay")

    return SmartConnectConfig(**validated)


def load_config(path: str | Path) -> SmartConnectConfig:
    """Read settings from a YAML file."""
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as file:
            data = yaml.safe_load(file)
    except OSError as err:
        raise ConfigError(f"Cannot read {path}: {err}") from err
    except yaml.YAMLError as err:
        raise ConfigError(f"Invalid YAML in {path}: {err}") from err

    _LOGGER.debug("Loaded configuration from %s", path)
    return config_from_dict(data)
