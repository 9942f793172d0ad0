import logging
from typing import Optional

from tasmota_admin.core.env_settings import env
from tasmota_admin.models.device import CanonicalDeviceStatus, EnergyData, SetNameResult, ToggleResult
from tasmota_admin.services.normalizer import (
    no_energy_monitoring,
    normalize,
    normalize_energy,
    parse_power_state,
)
from tasmota_admin.services.transport import TasmotaTransport

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

STATUS_ALL = "Status 0"
STATUS_SENSORS = "Status 10"
STATUS_BASIC = "Status 11"


def power_command(relay: int, argument: str) -> str:
    """Power TOGGLE for relay 1, Power2 TOGGLE for relay 2, and so on."""
    name = "Power" if relay <= 1 else f"Power{relay}"
    return f"{name} {argument}"


class TasmotaService:
    """
    Device facade used by the API routes, the workflow runner and the background tasks.

    Each operation is one bounded round trip (two for the energy fallback).
    Nothing is written to storage here; callers decide what to persist.
    """

    def __init__(self, transport: TasmotaTransport) -> None:
        self.transport = transport

    async def close(self) -> None:
        await self.transport.aclose()

    async def get_status(self, address: str, timeout_ms: int = env.DEVICE_TIMEOUT_MS) -> CanonicalDeviceStatus:
        """
        Fetch the comprehensive status of a device.
        An unreachable device yields the offline record instead of an error.
        """
        response = await self.transport.send_command(address, STATUS_ALL, timeout_ms)
        if not response.ok:
            logger.info(f"Device {address} unreachable for status ({response.error}), reporting offline")
        return normalize(response.data, address)

    async def get_energy_data(self, address: str, timeout_ms: int = env.DEVICE_TIMEOUT_MS) -> Optional[EnergyData]:
        """
        Read energy telemetry.

        Returns:
            EnergyData with has_energy_monitoring=True when the device has a sensor,
            a zeroed record with has_energy_monitoring=False when it answers without one,
            None when the device does not answer.
        """
        response = await self.transport.send_command(address, STATUS_SENSORS, timeout_ms)
        if not response.ok:
            return None

        energy = normalize_energy(response.data)
        if energy is not None:
            return energy

        logger.debug(f"Device {address} has no energy sensor, checking basic status")
        basic = await self.transport.send_command(address, STATUS_BASIC, timeout_ms)
        if not basic.ok:
            return None
        return no_energy_monitoring()

    async def toggle(self, address: str, relay: int = 1, timeout_ms: int = env.TOGGLE_TIMEOUT_MS) -> ToggleResult:
        return await self._power(address, relay, "TOGGLE", timeout_ms)

    async def set_power(
        self,
        address: str,
        desired: bool,
        relay: int = 1,
        timeout_ms: int = env.TOGGLE_TIMEOUT_MS,
    ) -> ToggleResult:
        return await self._power(address, relay, "ON" if desired else "OFF", timeout_ms)

    async def _power(self, address: str, relay: int, argument: str, timeout_ms: int) -> ToggleResult:
        command = power_command(relay, argument)
        response = await self.transport.send_command(address, command, timeout_ms)
        if not response.ok:
            logger.error(f"'{command}' failed for {address}: {response.error}")
            return ToggleResult(success=False, error=response.error)

        state = parse_power_state(response.data, relay)
        if state is None:
            logger.error(f"'{command}' to {address} returned no power state: {response.data}")
            return ToggleResult(success=False, error="no power state in response")

        logger.info(f"'{command}' on {address} -> {'ON' if state else 'OFF'}")
        return ToggleResult(success=True, power_state=state)

    async def set_device_name(
        self, address: str, name: str, timeout_ms: int = env.DEVICE_TIMEOUT_MS
    ) -> SetNameResult:
        """Set FriendlyName1 (relay label) and DeviceName (web UI title) on the device."""
        response = await self.transport.send_command(address, f"FriendlyName1 {name}", timeout_ms)
        if not response.ok:
            return SetNameResult(success=False, error=response.error)

        device_name = await self.transport.send_command(address, f"DeviceName {name}", timeout_ms)
        if not device_name.ok:
            logger.warning(f"FriendlyName1 set on {address} but DeviceName failed: {device_name.error}")

        return SetNameResult(success=True, new_name=response.data.get("FriendlyName1") or name)


def build_tasmota_service() -> TasmotaService:
    """Create a service wired with the configured device credentials."""
    return TasmotaService(TasmotaTransport(env.TASMOTA_USERNAME, env.TASMOTA_PASSWORD))
