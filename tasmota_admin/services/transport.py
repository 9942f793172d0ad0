"""
HTTP transport for the Tasmota command API.

Every call is a single GET against ``/cm?cmnd=<command>`` with HTTP Basic
credentials, bounded by a caller supplied timeout. Failures never raise:
they come back as a ``CommandResponse`` without data and a short reason.
"""
import asyncio
import logging
from typing import Optional
from urllib.parse import quote

import httpx

from tasmota_admin.models.device import CommandResponse

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

UNKNOWN_COMMAND = "unknown command"


def device_base_url(address: str) -> str:
    """
    Build the base URL for a device address.
    Accepts "10.0.0.5", "10.0.0.5:8081" or "http://10.0.0.5".
    """
    address = address.strip().rstrip("/")
    if address.startswith(("http://", "https://")):
        return address
    return f"http://{address}"


class TasmotaTransport:
    """
    Stateless command sender. Holds the device credentials and a pooled
    ``httpx.AsyncClient``; nothing about individual devices is kept.
    """

    def __init__(
        self,
        username: Optional[str],
        password: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._auth = httpx.BasicAuth(username, password or "") if username else None
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers={"Accept": "application/json", "User-Agent": "tasmota-admin"})
        return self._client

    async def aclose(self) -> None:
        """Close the pooled client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def send_command(self, address: str, command: str, timeout_ms: int) -> CommandResponse:
        """
        Send one command to a device. At most one attempt is made.

        Args:
            address: Device network address, optionally with port
            command: Tasmota command string, e.g. "Power TOGGLE" or "Status 10"
            timeout_ms: Upper bound for the whole request in milliseconds

        Returns:
            CommandResponse with ``data`` on success, ``error`` otherwise
        """
        url = f"{device_base_url(address)}/cm?cmnd={quote(command, safe='')}"
        timeout = max(timeout_ms, 1) / 1000.0
        try:
            response = await asyncio.wait_for(
                self._get_client().get(url, auth=self._auth, timeout=timeout),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning(f"Command '{command}' to {address} timed out after {timeout_ms}ms")
            return CommandResponse(command=command, error="timeout")
        except httpx.HTTPError as e:
            logger.warning(f"Command '{command}' to {address} failed: {e!r}")
            return CommandResponse(command=command, error=f"network error: {e.__class__.__name__}")

        if not response.is_success:
            logger.warning(f"Command '{command}' to {address} returned HTTP {response.status_code}")
            return CommandResponse(command=command, error=f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            logger.warning(f"Command '{command}' to {address} returned malformed JSON")
            return CommandResponse(command=command, error="malformed response")

        if not isinstance(body, dict):
            logger.warning(f"Command '{command}' to {address} returned a non-object body: {type(body).__name__}")
            return CommandResponse(command=command, error="malformed response")

        if str(body.get("Command", "")).lower() == "unknown":
            logger.warning(f"Device {address} rejected '{command}' as an unknown command")
            return CommandResponse(command=command, error=UNKNOWN_COMMAND)

        refusal = body.get("WARNING") or body.get("ERROR")
        if refusal:
            logger.warning(f"Device {address} refused '{command}': {refusal}")
            return CommandResponse(command=command, error=str(refusal))

        logger.debug(f"Command '{command}' to {address} succeeded")
        return CommandResponse(command=command, data=body)
