import math
from typing import List

from tasmota_admin.db.models import Device, EnergyReading, utcnow
from tasmota_admin.models.device import DeviceMetrics, HistoryStats

NOMINAL_VOLTAGE = 230.0

# Without per-day counters on record, today/yesterday are estimated from the total.
TODAY_SHARE = 0.1
YESTERDAY_SHARE = 0.08


def derive_metrics(device: Device) -> DeviceMetrics:
    """
    Electrical metrics computed from the last stored telemetry of a device.
    Apparent power comes from V * I when a current is known, otherwise it equals the real power.
    """
    power = device.energy_consumption or 0.0
    voltage = device.voltage or NOMINAL_VOLTAGE
    current = device.current or power / voltage
    apparent = max(voltage * current, power)
    reactive = math.sqrt(max(apparent ** 2 - power ** 2, 0.0))
    factor = power / apparent if apparent > 0 else 1.0
    total = device.total_energy or 0.0

    return DeviceMetrics(
        power=power,
        apparent_power=round(apparent, 3),
        reactive_power=round(reactive, 3),
        factor=round(factor, 3),
        voltage=voltage,
        current=round(current, 3),
        total=total,
        today=round(total * TODAY_SHARE, 3),
        yesterday=round(total * YESTERDAY_SHARE, 3),
        last_update=utcnow(),
    )


def history_stats(readings: List[EnergyReading]) -> HistoryStats:
    """Summary of readings ordered newest first."""
    if not readings:
        return HistoryStats(total_readings=0, avg_power=0.0, max_power=0.0, min_power=0.0)
    powers = [reading.power for reading in readings]
    return HistoryStats(
        total_readings=len(readings),
        avg_power=round(sum(powers) / len(powers), 3),
        max_power=max(powers),
        min_power=min(powers),
        start=readings[-1].timestamp,
        end=readings[0].timestamp,
    )
