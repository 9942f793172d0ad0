from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress, StrictBool, field_serializer, field_validator

from tasmota_admin.models.category import CategoryRead
from tasmota_admin.models.enums import DeviceStatus, PowerState


class CommandResponse(BaseModel):
    """
    Outcome of a single command sent to a device.
    Either ``data`` holds the parsed JSON body or ``error`` says why there is none.
    """
    command: str
    data: Optional[dict] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.data is not None


class CanonicalDeviceStatus(BaseModel):
    """
    Normalized view of one device status response. Always fully populated.
    """
    device_id: str
    device_name: str = Field("Tasmota Device")
    ip_address: str
    mac_address: Optional[str] = None
    hostname: Optional[str] = None
    firmware_version: str = "unknown"
    status: str = Field(..., description="online or offline")
    power_state: bool = False
    energy_consumption: float = Field(0.0, description="Instantaneous power draw in W")
    total_energy: float = Field(0.0, description="Cumulative energy in kWh")
    voltage: float = 230.0
    current: float = 0.0
    wifi_signal: int = Field(-50, description="Signal strength in dBm")
    uptime: int = Field(0, description="Uptime in seconds")
    apparent_power: float = 0.0
    reactive_power: float = 0.0
    power_factor: float = 1.0
    energy_today: float = 0.0
    energy_yesterday: float = 0.0
    last_seen: datetime

    @property
    def online(self) -> bool:
        return self.status == "online"


class EnergyData(BaseModel):
    power: float = 0.0
    apparent_power: float = 0.0
    reactive_power: float = 0.0
    factor: float = 1.0
    voltage: float = 230.0
    current: float = 0.0
    total: float = 0.0
    today: float = 0.0
    yesterday: float = 0.0
    has_energy_monitoring: bool = False
    last_update: datetime


class ToggleResult(BaseModel):
    success: bool
    power_state: Optional[bool] = None
    error: Optional[str] = None


class SetNameResult(BaseModel):
    success: bool
    new_name: Optional[str] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# API request / response bodies
# ---------------------------------------------------------------------------

class DeviceCreate(BaseModel):
    device_id: str = Field(..., min_length=1)
    device_name: str = Field(..., min_length=1)
    ip_address: IPvAnyAddress
    mac_address: Optional[str] = None
    firmware_version: str = Field(..., min_length=1)
    description: Optional[str] = None
    category_id: Optional[str] = None


class DeviceUpdate(BaseModel):
    device_name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    ip_address: Optional[IPvAnyAddress] = None
    enable_data_logging: Optional[bool] = None
    data_retention_days: Optional[int] = Field(None, ge=1, le=365)
    min_log_interval_seconds: Optional[int] = Field(None, ge=10, le=86400)
    push_name_to_device: bool = Field(False, description="Also set FriendlyName/DeviceName on the device")


class CategoryAssignment(BaseModel):
    category_id: Optional[str] = None


class CriticalUpdate(BaseModel):
    is_critical: StrictBool


class CleanupResult(BaseModel):
    success: bool = True
    message: str
    deleted_count: int
    device_id: str
    device_name: str


class PowerRequest(BaseModel):
    state: PowerState


class FetchInfoRequest(BaseModel):
    ip_address: IPvAnyAddress


class DiscoverRequest(BaseModel):
    range: str = Field(..., min_length=1, description="CIDR (10.0.0.0/24), span (10.0.0.1-10.0.0.50) or single address")
    max_concurrency: Optional[int] = Field(None, ge=1, le=100)
    timeout_ms: Optional[int] = Field(None, ge=100, le=30000)

    @field_validator("range")
    @classmethod
    def strip_range(cls, value: str) -> str:
        return value.strip()


class DeviceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    device_id: str
    device_name: str
    ip_address: str
    mac_address: Optional[str] = None
    firmware_version: str
    description: Optional[str] = None
    is_critical: bool = False
    status: DeviceStatus
    power_state: bool
    energy_consumption: float
    total_energy: float
    wifi_signal: int
    uptime: int
    voltage: Optional[float] = None
    current: Optional[float] = None
    enable_data_logging: bool
    data_retention_days: int
    min_log_interval_seconds: int
    last_seen: datetime
    category: Optional[CategoryRead] = None

    @field_serializer("status")
    def serialize_status(self, status: DeviceStatus) -> str:
        return status.value.lower()


class LiveDeviceRead(DeviceRead):
    energy: Optional[EnergyData] = None


class DiscoveredDevice(BaseModel):
    device_id: str
    device_name: str
    ip_address: str
    mac_address: Optional[str] = None
    firmware_version: str
    power_state: bool
    already_added: bool = False


class DiscoverResult(BaseModel):
    discovered_devices: List[DiscoveredDevice]
    total_scanned: int
    total_found: int
    duration_sec: float


class DeviceMetrics(BaseModel):
    power: float
    apparent_power: float
    reactive_power: float
    factor: float
    voltage: float
    current: float
    total: float
    today: float
    yesterday: float
    last_update: datetime


class EnergyReadingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    power: float
    energy: float
    voltage: Optional[float] = None
    current: Optional[float] = None
    timestamp: datetime


class HistoryStats(BaseModel):
    total_readings: int
    avg_power: float
    max_power: float
    min_power: float
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class DeviceHistory(BaseModel):
    device_id: str
    device_name: str
    limit: int
    readings: List[EnergyReadingRead]
    stats: HistoryStats
