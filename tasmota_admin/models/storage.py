from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class StorageSize(BaseModel):
    bytes: int
    formatted: str
    record_count: Optional[int] = None


class StorageBreakdown(BaseModel):
    last_24_hours: int
    last_7_days: int
    last_30_days: int
    total: int
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None


class DeviceStorage(BaseModel):
    device_id: str
    device_name: str
    enabled: bool
    data_retention_days: int
    min_log_interval_seconds: int
    actual_storage: StorageSize
    estimated_storage: StorageSize
    efficiency: float = Field(..., description="Actual over estimated storage, capped at 1")


class DeviceStorageDetail(DeviceStorage):
    breakdown: StorageBreakdown


class StorageSummary(BaseModel):
    total_actual_storage: StorageSize
    total_estimated_storage: StorageSize
    total_records: int
    active_devices: int
    total_devices: int
    average_retention_days: int
    average_interval_seconds: int
    storage_efficiency: float


class StorageOverview(BaseModel):
    summary: StorageSummary
    devices: List[DeviceStorage]
