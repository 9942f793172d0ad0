"""
Normalization of raw Tasmota responses.

Firmware builds and simulators expose the same data under different keys.
``STATUS_ALIASES`` lists, per canonical field, the key paths to try in order;
the first path that resolves wins. Every function here is total: any input,
including partial or malformed JSON, yields a valid record.
"""
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence, Tuple

from tasmota_admin.models.device import CanonicalDeviceStatus, EnergyData

Path = Tuple[str, ...]

NOMINAL_VOLTAGE = 230.0
UNKNOWN_SIGNAL_DBM = -50
OFFLINE_SIGNAL_DBM = -100
DEFAULT_DEVICE_NAME = "Tasmota Device"
DEFAULT_FIRMWARE = "unknown"

# canonical field -> key paths, most specific first
STATUS_ALIASES: Dict[str, Sequence[Path]] = {
    "power_state": (
        ("StatusSTS", "POWER"),
        ("StatusSTS", "POWER1"),
        ("POWER",),
        ("POWER1",),
        ("Status", "Power"),
        ("power_state",),
    ),
    "energy_consumption": (
        ("StatusSNS", "ENERGY", "Power"),
        ("ENERGY", "Power"),
        ("energy_consumption",),
    ),
    "total_energy": (
        ("StatusSNS", "ENERGY", "Total"),
        ("ENERGY", "Total"),
        ("total_energy",),
    ),
    "voltage": (
        ("StatusSNS", "ENERGY", "Voltage"),
        ("ENERGY", "Voltage"),
        ("voltage",),
    ),
    "current": (
        ("StatusSNS", "ENERGY", "Current"),
        ("ENERGY", "Current"),
        ("current",),
    ),
    "apparent_power": (
        ("StatusSNS", "ENERGY", "ApparentPower"),
        ("ENERGY", "ApparentPower"),
    ),
    "reactive_power": (
        ("StatusSNS", "ENERGY", "ReactivePower"),
        ("ENERGY", "ReactivePower"),
    ),
    "power_factor": (
        ("StatusSNS", "ENERGY", "Factor"),
        ("ENERGY", "Factor"),
    ),
    "energy_today": (
        ("StatusSNS", "ENERGY", "Today"),
        ("ENERGY", "Today"),
    ),
    "energy_yesterday": (
        ("StatusSNS", "ENERGY", "Yesterday"),
        ("ENERGY", "Yesterday"),
    ),
    "wifi_signal": (
        ("StatusSTS", "Wifi", "Signal"),
        ("Wifi", "Signal"),
        ("wifi_signal",),
    ),
    "uptime": (
        ("StatusSTS", "UptimeSec"),
        ("UptimeSec",),
        ("uptime",),
    ),
    "hostname": (
        ("StatusNET", "Hostname"),
        ("hostname",),
    ),
    "mac_address": (
        ("StatusNET", "Mac"),
        ("mac_address",),
    ),
    "firmware_version": (
        ("StatusFWR", "Version"),
        ("firmware_version",),
    ),
    "device_name": (
        ("Status", "DeviceName"),
        ("Status", "FriendlyName"),
        ("device_name",),
    ),
    "device_id": (
        ("device_id",),
    ),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _lookup(raw: Any, path: Path) -> Any:
    node = raw
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def _resolve(raw: Any, field: str) -> Any:
    for path in STATUS_ALIASES[field]:
        value = _lookup(raw, path)
        if value is not None and value != "" and value != []:
            return value
    return None


def to_float(value: Any, default: float) -> float:
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def to_int(value: Any, default: int) -> int:
    return int(to_float(value, float(default)))


def to_text(value: Any, default: Optional[str]) -> Optional[str]:
    # FriendlyName is a list on real firmware
    if isinstance(value, list):
        value = next((item for item in value if isinstance(item, str) and item.strip()), None)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def to_power(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        text = value.strip().upper()
        if text in ("ON", "1", "TRUE"):
            return True
        if text in ("OFF", "0", "FALSE"):
            return False
    return None


def offline_status(address: str) -> CanonicalDeviceStatus:
    """Record for an unreachable device: zeroed telemetry, very weak signal."""
    return CanonicalDeviceStatus(
        device_id=fallback_device_id(address),
        ip_address=address,
        status="offline",
        power_state=False,
        energy_consumption=0.0,
        total_energy=0.0,
        voltage=0.0,
        current=0.0,
        wifi_signal=OFFLINE_SIGNAL_DBM,
        uptime=0,
        apparent_power=0.0,
        reactive_power=0.0,
        power_factor=0.0,
        energy_today=0.0,
        energy_yesterday=0.0,
        last_seen=_utcnow(),
    )


def fallback_device_id(address: str) -> str:
    return "device_" + "".join(ch if ch.isalnum() else "_" for ch in address)


def normalize(raw: Any, address: str) -> CanonicalDeviceStatus:
    """
    Map a raw device response onto the canonical status record.

    Args:
        raw: Parsed JSON from the device, or None when it could not be reached
        address: The address the response came from

    Returns:
        CanonicalDeviceStatus, never None
    """
    if not isinstance(raw, dict):
        return offline_status(address)

    hostname = to_text(_resolve(raw, "hostname"), None)
    device_id = to_text(_resolve(raw, "device_id"), None) or hostname or fallback_device_id(address)

    def number(field: str, default: float) -> float:
        return to_float(_resolve(raw, field), default)

    return CanonicalDeviceStatus(
        device_id=device_id,
        device_name=to_text(_resolve(raw, "device_name"), DEFAULT_DEVICE_NAME),
        ip_address=address,
        mac_address=to_text(_resolve(raw, "mac_address"), None),
        hostname=hostname,
        firmware_version=to_text(_resolve(raw, "firmware_version"), DEFAULT_FIRMWARE),
        status="online",
        power_state=bool(to_power(_resolve(raw, "power_state"))),
        energy_consumption=number("energy_consumption", 0.0),
        total_energy=number("total_energy", 0.0),
        voltage=number("voltage", NOMINAL_VOLTAGE),
        current=number("current", 0.0),
        wifi_signal=to_int(_resolve(raw, "wifi_signal"), UNKNOWN_SIGNAL_DBM),
        uptime=max(to_int(_resolve(raw, "uptime"), 0), 0),
        apparent_power=number("apparent_power", 0.0),
        reactive_power=number("reactive_power", 0.0),
        power_factor=number("power_factor", 1.0),
        energy_today=number("energy_today", 0.0),
        energy_yesterday=number("energy_yesterday", 0.0),
        last_seen=_utcnow(),
    )


def _energy_block(raw: Any) -> Optional[dict]:
    for path in (("StatusSNS", "ENERGY"), ("ENERGY",)):
        block = _lookup(raw, path)
        if isinstance(block, dict):
            return block
    return None


def normalize_energy(raw: Any) -> Optional[EnergyData]:
    """
    Extract energy figures from a sensor status response.
    Returns None when the response has no ENERGY block (no energy sensor).
    """
    energy = _energy_block(raw)
    if energy is None:
        return None
    return EnergyData(
        power=to_float(energy.get("Power"), 0.0),
        apparent_power=to_float(energy.get("ApparentPower"), 0.0),
        reactive_power=to_float(energy.get("ReactivePower"), 0.0),
        factor=to_float(energy.get("Factor"), 1.0),
        voltage=to_float(energy.get("Voltage"), NOMINAL_VOLTAGE),
        current=to_float(energy.get("Current"), 0.0),
        total=to_float(energy.get("Total"), 0.0),
        today=to_float(energy.get("Today"), 0.0),
        yesterday=to_float(energy.get("Yesterday"), 0.0),
        has_energy_monitoring=True,
        last_update=_utcnow(),
    )


def no_energy_monitoring() -> EnergyData:
    return EnergyData(has_energy_monitoring=False, last_update=_utcnow())


def parse_power_state(raw: Any, relay: int = 1) -> Optional[bool]:
    """
    Read the relay state from a Power command reply.
    Relay 1 answers as POWER or POWER1 depending on how many relays the device has.
    """
    if not isinstance(raw, dict):
        return None
    keys = ("POWER", "POWER1") if relay == 1 else (f"POWER{relay}",)
    for key in keys:
        if key in raw:
            return to_power(raw[key])
    return None
