"""Tests for raw response normalization."""

import math

import pytest

from tasmota_admin.services.normalizer import (
    OFFLINE_SIGNAL_DBM,
    fallback_device_id,
    normalize,
    normalize_energy,
    parse_power_state,
    to_float,
    to_power,
)

FULL_STATUS = {
    "Status": {"DeviceName": "Kitchen", "FriendlyName": ["Kitchen Plug"], "Power": 1},
    "StatusFWR": {"Version": "13.1.0(tasmota)"},
    "StatusNET": {"Hostname": "tasmota-1A2B3C", "Mac": "AA:BB:CC:11:22:33"},
    "StatusSTS": {"POWER": "ON", "UptimeSec": 86400, "Wifi": {"Signal": -58}},
    "StatusSNS": {
        "ENERGY": {
            "Total": 12.345,
            "Today": 0.5,
            "Yesterday": 0.7,
            "Power": 42,
            "ApparentPower": 45,
            "ReactivePower": 16,
            "Factor": 0.93,
            "Voltage": 229,
            "Current": 0.196,
        }
    },
}


def test_normalize_full_status():
    """Test a complete Status 0 response maps every field."""
    status = normalize(FULL_STATUS, "192.168.1.30")

    assert status.online
    assert status.device_id == "tasmota-1A2B3C"
    assert status.device_name == "Kitchen"
    assert status.mac_address == "AA:BB:CC:11:22:33"
    assert status.firmware_version == "13.1.0(tasmota)"
    assert status.power_state is True
    assert status.energy_consumption == 42
    assert status.total_energy == 12.345
    assert status.voltage == 229
    assert status.current == 0.196
    assert status.wifi_signal == -58
    assert status.uptime == 86400
    assert status.power_factor == 0.93
    assert status.energy_today == 0.5
    assert status.energy_yesterday == 0.7


def test_normalize_partial_response_uses_defaults():
    """Test missing fields fall back to their documented defaults."""
    status = normalize({"POWER1": "OFF", "Wifi": {"Signal": "-71"}}, "10.0.0.9")

    assert status.online
    assert status.power_state is False
    assert status.wifi_signal == -71
    assert status.voltage == 230
    assert status.power_factor == 1.0
    assert status.energy_consumption == 0
    assert status.firmware_version == "unknown"
    assert status.device_name == "Tasmota Device"
    assert status.device_id == "device_10_0_0_9"


def test_normalize_flat_simulator_shape():
    """Test the flat key layout used by simulators."""
    raw = {
        "device_id": "sim-01",
        "device_name": "Simulated",
        "power_state": True,
        "energy_consumption": "15.5",
        "total_energy": 2,
        "wifi_signal": -40,
        "uptime": 12,
    }
    status = normalize(raw, "127.0.0.1:8081")

    assert status.device_id == "sim-01"
    assert status.device_name == "Simulated"
    assert status.power_state is True
    assert status.energy_consumption == 15.5
    assert status.uptime == 12


def test_normalize_prefers_status_sts_over_top_level():
    """Test the most specific alias wins."""
    status = normalize({"StatusSTS": {"POWER": "OFF"}, "POWER": "ON"}, "10.0.0.1")

    assert status.power_state is False


@pytest.mark.parametrize("raw", [None, "not json", 42, [], ["POWER", "ON"]])
def test_normalize_non_object_is_offline(raw):
    """Test anything that is not a JSON object yields the offline record."""
    status = normalize(raw, "10.0.0.7")

    assert status.status == "offline"
    assert status.power_state is False
    assert status.energy_consumption == 0
    assert status.total_energy == 0
    assert status.voltage == 0
    assert status.uptime == 0
    assert status.wifi_signal == OFFLINE_SIGNAL_DBM
    assert status.ip_address == "10.0.0.7"


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"StatusSTS": None},
        {"StatusSTS": "garbage"},
        {"StatusSNS": {"ENERGY": ["Power", 5]}},
        {"StatusSNS": {"ENERGY": {"Power": float("nan"), "Voltage": float("inf")}}},
        {"StatusSTS": {"UptimeSec": -30, "Wifi": {"Signal": True}}},
        {"Status": {"FriendlyName": [None, ""]}},
        {"power_state": {"nested": "dict"}, "uptime": "abc"},
    ],
)
def test_normalize_is_total(raw):
    """Test malformed objects never raise and produce finite values."""
    status = normalize(raw, "10.0.0.8")

    assert status.online
    for value in (status.energy_consumption, status.voltage, status.current, status.power_factor):
        assert math.isfinite(value)
    assert status.uptime >= 0
    assert isinstance(status.wifi_signal, int)


def test_fallback_device_id():
    assert fallback_device_id("192.168.1.5") == "device_192_168_1_5"
    assert fallback_device_id("10.0.0.2:8080") == "device_10_0_0_2_8080"


@pytest.mark.parametrize(
    "value, expected",
    [("ON", True), ("off", False), ("1", True), (0, False), (True, True), ("maybe", None), (None, None)],
)
def test_to_power(value, expected):
    assert to_power(value) is expected


def test_to_float_rejects_bool_and_non_finite():
    assert to_float(True, 1.5) == 1.5
    assert to_float("nan", 2.0) == 2.0
    assert to_float("3.25", 0.0) == 3.25


def test_normalize_energy_with_sensor():
    """Test energy figures are read from StatusSNS.ENERGY."""
    energy = normalize_energy(FULL_STATUS)

    assert energy.has_energy_monitoring
    assert energy.power == 42
    assert energy.total == 12.345
    assert energy.factor == 0.93


def test_normalize_energy_without_sensor():
    assert normalize_energy({"StatusSNS": {"Time": "2024-01-01T00:00:00"}}) is None
    assert normalize_energy(None) is None


def test_parse_power_state():
    """Test relay 1 accepts POWER or POWER1 and other relays use their own key."""
    assert parse_power_state({"POWER": "ON"}) is True
    assert parse_power_state({"POWER1": "OFF"}) is False
    assert parse_power_state({"POWER2": "ON"}, relay=2) is True
    assert parse_power_state({"POWER": "ON"}, relay=2) is None
    assert parse_power_state({"Dimmer": 50}) is None
    assert parse_power_state(None) is None
