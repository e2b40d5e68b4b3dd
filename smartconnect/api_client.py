"""REST control-plane client for call operations."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

from .const import (
    API_CALL_ACCEPT,
    API_CALL_HANGUP,
    API_CALL_MAKE,
    API_CALL_REJECT,
    DEFAULT_REQUEST_TIMEOUT,
)
from .exceptions import SmartConnectError

_LOGGER = logging.getLogger(__name__)


class CallControlError(SmartConnectError):
    """Exception for failed control requests."""

    def __init__(self, message: str, status: int | None = None) -> None:
        """Initialize control error."""
        super().__init__(message)
        self.status = status


class NetworkError(CallControlError):
    """The request could not be completed."""


class ValidationError(CallControlError):
    """The request was rejected as malformed."""


class NotFoundError(CallControlError):
    """The server has no record of the referenced call."""


@dataclass(frozen=True, slots=True)
class DialResult:
    """Server acknowledgment of an outgoing call."""

    call_id: str | None
    status: str


class CallControlClient:
    """Client for the one-shot call control endpoints."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        token: str | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialize API client."""
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._request_timeout = request_timeout

    @property
    def base_url(self) -> str:
        """Get base URL of the control plane."""
        return self._base_url

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _post(
        self, endpoint: str, data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Make a POST request to the control plane."""
        url = f"{self._base_url}{endpoint}"

        try:
            async with asyncio.timeout(self._request_timeout):
                async with self._session.post(
                    url, json=data or {}, headers=self._headers()
                ) as response:
                    return await self._handle_response(response, endpoint)

        except asyncio.TimeoutError as err:
            _LOGGER.error("Timeout calling %s", url)
            raise NetworkError("Request timeout") from err
        except aiohttp.ClientError as err:
            _LOGGER.error("Client error calling %s: %s", url, err)
            raise NetworkError(f"Connection error: {err}") from err

    async def _handle_response(
        self, response: aiohttp.ClientResponse, endpoint: str
    ) -> dict[str, Any]:
        """Map an HTTP response to a payload or a typed error."""
        try:
            response_data = await response.json(content_type=None)
        except (json.JSONDecodeError, aiohttp.ContentTypeError):
            response_data = None

        if not isinstance(response_data, dict):
            response_data = {}

        error_msg = response_data.get("error") or f"HTTP {response.status}"

        if response.status == 400:
            raise ValidationError(error_msg, response.status)
        if response.status == 404:
            raise NotFoundError(error_msg, response.status)
        if response.status >= 400:
            raise NetworkError(error_msg, response.status)

        if not response_data.get("success", True):
            _LOGGER.error("Control request %s failed: %s", endpoint, error_msg)
            raise NetworkError(error_msg, response.status)

        return response_data

    async def dial(self, number: str) -> DialResult:
        """Start an outgoing call."""
        if not number:
            raise ValidationError("Number cannot be empty")
        response = await self._post(API_CALL_MAKE, {"to": number})
        call_id = response.get("callId") or response.get("callSid")
        return DialResult(
            call_id=str(call_id) if call_id else None,
            status=str(response.get("status") or "initiated"),
        )

    async def accept(self, call_id: str) -> None:
        """Accept an incoming call."""
        await self._post(API_CALL_ACCEPT.format(call_id=call_id))

    async def reject(self, call_id: str) -> None:
        """Reject an incoming call."""
        await self._post(API_CALL_REJECT.format(call_id=call_id))

    async def hangup(self, call_id: str) -> None:
        """Terminate a call."""
        await self._post(API_CALL_HANGUP.format(call_id=call_id))
