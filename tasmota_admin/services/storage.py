"""
Storage usage of the energy history.

Sizes are estimates: every stored reading is counted at the width of one
``energy_readings`` row (eight 8-byte columns) plus 30% database overhead.
"""
from datetime import timedelta
from typing import List, Optional

from tasmota_admin.db.models import Device, utcnow
from tasmota_admin.db.repository import DeviceRepository
from tasmota_admin.models.storage import (
    DeviceStorage,
    DeviceStorageDetail,
    StorageBreakdown,
    StorageOverview,
    StorageSize,
    StorageSummary,
)

BYTES_PER_READING = 64 * 1.3
SECONDS_PER_DAY = 24 * 60 * 60
UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{max(size, 0)} B"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.1f} {UNITS[unit]}"


def _size(size: int, record_count: Optional[int] = None) -> StorageSize:
    return StorageSize(bytes=size, formatted=format_bytes(size), record_count=record_count)


def actual_bytes(record_count: int) -> int:
    return round(record_count * BYTES_PER_READING)


def estimated_bytes(retention_days: int, interval_seconds: int) -> int:
    """Size of a full retention window logged at the minimum interval."""
    readings = SECONDS_PER_DAY / interval_seconds * retention_days
    return round(readings * BYTES_PER_READING)


def efficiency(actual: int, estimated: int) -> float:
    if estimated <= 0:
        return 1.0
    return round(min(actual / estimated, 1.0), 4)


def device_storage(repo: DeviceRepository, device: Device) -> DeviceStorage:
    """
    Storage of one device. Devices with logging disabled keep their stored
    readings but are not expected to grow, so their estimate is zero.
    """
    count = repo.reading_count(device)
    actual = actual_bytes(count)
    estimated = (
        estimated_bytes(device.data_retention_days, device.min_log_interval_seconds)
        if device.enable_data_logging else 0
    )
    return DeviceStorage(
        device_id=device.device_id,
        device_name=device.device_name,
        enabled=device.enable_data_logging,
        data_retention_days=device.data_retention_days,
        min_log_interval_seconds=device.min_log_interval_seconds,
        actual_storage=_size(actual, count),
        estimated_storage=_size(estimated),
        efficiency=efficiency(actual, estimated),
    )


def device_storage_detail(repo: DeviceRepository, device: Device) -> DeviceStorageDetail:
    now = utcnow()
    oldest, newest = repo.reading_span(device)
    breakdown = StorageBreakdown(
        last_24_hours=repo.reading_count(device, since=now - timedelta(hours=24)),
        last_7_days=repo.reading_count(device, since=now - timedelta(days=7)),
        last_30_days=repo.reading_count(device, since=now - timedelta(days=30)),
        total=repo.reading_count(device),
        oldest=oldest,
        newest=newest,
    )
    return DeviceStorageDetail(**device_storage(repo, device).model_dump(), breakdown=breakdown)


def storage_overview(repo: DeviceRepository, devices: List[Device]) -> StorageOverview:
    entries = [device_storage(repo, device) for device in devices]
    enabled = [entry for entry in entries if entry.enabled]
    total_actual = sum(entry.actual_storage.bytes for entry in entries)
    total_estimated = sum(entry.estimated_storage.bytes for entry in entries)

    summary = StorageSummary(
        total_actual_storage=_size(total_actual),
        total_estimated_storage=_size(total_estimated),
        total_records=sum(entry.actual_storage.record_count or 0 for entry in entries),
        active_devices=len(enabled),
        total_devices=len(entries),
        average_retention_days=round(sum(e.data_retention_days for e in enabled) / len(enabled)) if enabled else 0,
        average_interval_seconds=round(sum(e.min_log_interval_seconds for e in enabled) / len(enabled)) if enabled else 0,
        storage_efficiency=efficiency(total_actual, total_estimated),
    )
    return StorageOverview(summary=summary, devices=entries)
