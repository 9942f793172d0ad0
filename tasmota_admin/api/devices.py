import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from tasmota_admin.core.env_settings import env
from tasmota_admin.core.exceptions import DeviceNotFoundError
from tasmota_admin.core.tasks.device_tasks import persist_device_status
from tasmota_admin.db.models import Device
from tasmota_admin.db.repository import CategoryRepository, DeviceRepository
from tasmota_admin.db.session import get_db
from tasmota_admin.models.category import CategoryStat
from tasmota_admin.models.device import (
    CanonicalDeviceStatus,
    CategoryAssignment,
    CleanupResult,
    CriticalUpdate,
    DeviceCreate,
    DeviceHistory,
    DeviceMetrics,
    DeviceRead,
    DeviceUpdate,
    DiscoveredDevice,
    DiscoverRequest,
    DiscoverResult,
    EnergyData,
    EnergyReadingRead,
    FetchInfoRequest,
    LiveDeviceRead,
    PowerRequest,
)
from tasmota_admin.models.enums import DeviceStatus
from tasmota_admin.models.storage import DeviceStorageDetail
from tasmota_admin.services.discovery import DiscoveryRangeError, discover_devices, expand_range
from tasmota_admin.services.metrics import derive_metrics, history_stats
from tasmota_admin.services.storage import device_storage_detail
from tasmota_admin.services.tasmota import TasmotaService
from tasmota_admin.utils.dependencies import get_tasmota_service, is_admin, is_authenticated

router = APIRouter(prefix="/devices", tags=["Devices"], dependencies=[Depends(is_authenticated)])
logger = logging.getLogger(__name__)

UNCATEGORIZED_COLOR = "#6B7280"


def _get_device(repo: DeviceRepository, device_id: str) -> Device:
    device = repo.get(device_id)
    if device is None:
        raise DeviceNotFoundError(device_id)
    return device


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _offline_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"error": message, "offline": True},
    )


def _enqueue_persist(device_id: str, live: CanonicalDeviceStatus) -> None:
    try:
        persist_device_status.delay(device_id, live.model_dump(mode="json"))
    except Exception as e:
        # Broker unreachable; the next poll will store the state instead.
        logger.error(f"Could not enqueue status persistence for {device_id}: {e}")


def _live_view(device: Device, live: CanonicalDeviceStatus, energy: Optional[EnergyData]) -> LiveDeviceRead:
    view = LiveDeviceRead.model_validate(device)
    if not live.online:
        return view.model_copy(update={"status": DeviceStatus.OFFLINE})
    return view.model_copy(update={
        "status": DeviceStatus.ONLINE,
        "power_state": live.power_state,
        "energy_consumption": live.energy_consumption,
        "total_energy": live.total_energy,
        "wifi_signal": live.wifi_signal,
        "uptime": live.uptime,
        "voltage": live.voltage,
        "current": live.current,
        "last_seen": live.last_seen,
        "energy": energy,
    })


@router.get("", response_model=List[LiveDeviceRead])
async def list_devices(
    category_id: Optional[str] = None,
    live: bool = False,
    db: Session = Depends(get_db),
    service: TasmotaService = Depends(get_tasmota_service),
):
    """
    List stored devices. With ``live=true`` every device is queried concurrently
    and the answer reflects the devices' current state.
    """
    devices = DeviceRepository(db).list(category_id)
    if not live:
        return [LiveDeviceRead.model_validate(device) for device in devices]

    async def query(address: str):
        return await asyncio.gather(service.get_status(address), service.get_energy_data(address))

    results = await asyncio.gather(*(query(device.ip_address) for device in devices), return_exceptions=True)

    views = []
    for device, result in zip(devices, results):
        if isinstance(result, Exception):
            logger.error(f"Live query of {device.device_id} failed: {result}")
            views.append(LiveDeviceRead.model_validate(device))
            continue
        live_status, energy = result
        views.append(_live_view(device, live_status, energy))
        _enqueue_persist(device.device_id, live_status)
    return views


@router.post("", response_model=DeviceRead, status_code=status.HTTP_201_CREATED)
def create_device(body: DeviceCreate, db: Session = Depends(get_db)):
    repo = DeviceRepository(db)
    if repo.exists(body.device_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Device with this ID already exists")
    if body.category_id and CategoryRepository(db).get(body.category_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")

    device = Device(
        device_id=body.device_id,
        device_name=body.device_name,
        ip_address=str(body.ip_address),
        mac_address=body.mac_address,
        firmware_version=body.firmware_version,
        description=body.description,
        category_id=body.category_id,
    )
    db.add(device)
    db.commit()
    db.refresh(device)
    logger.info(f"Device {device.device_id} added at {device.ip_address}")
    return device


@router.get("/categories/stats", response_model=List[CategoryStat])
def category_stats(db: Session = Depends(get_db)):
    """Device count per category; uncategorized devices are reported last."""
    stats, uncategorized = [], 0
    for category_id, name, color, count in CategoryRepository(db).device_counts():
        if category_id is None:
            uncategorized = count
            continue
        stats.append(CategoryStat(
            category_id=category_id,
            category_name=name or "Unknown",
            category_color=color or UNCATEGORIZED_COLOR,
            count=count,
        ))
    if uncategorized:
        stats.append(CategoryStat(category_name="Uncategorized", category_color=UNCATEGORIZED_COLOR, count=uncategorized))
    return stats


@router.post("/fetch-info", response_model=DiscoveredDevice)
async def fetch_device_info(
    body: FetchInfoRequest,
    db: Session = Depends(get_db),
    service: TasmotaService = Depends(get_tasmota_service),
):
    """Probe an address before adding it."""
    address = str(body.ip_address)
    live = await service.get_status(address)
    if not live.online:
        raise _offline_error(f"Could not reach a Tasmota device at {address}")

    return DiscoveredDevice(
        device_id=live.device_id,
        device_name=live.device_name,
        ip_address=address,
        mac_address=live.mac_address,
        firmware_version=live.firmware_version,
        power_state=live.power_state,
        already_added=DeviceRepository(db).exists(live.device_id),
    )


@router.post("/discover", response_model=DiscoverResult, dependencies=[Depends(is_admin)])
async def discover(
    body: DiscoverRequest,
    db: Session = Depends(get_db),
    service: TasmotaService = Depends(get_tasmota_service),
):
    try:
        hosts = expand_range(body.range, env.DISCOVERY_MAX_ADDRESSES)
    except DiscoveryRangeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    found, summary = await discover_devices(
        service,
        hosts,
        max_concurrency=body.max_concurrency or env.DISCOVERY_MAX_CONCURRENCY,
        timeout_ms=body.timeout_ms or env.DISCOVERY_TIMEOUT_MS,
    )

    repo = DeviceRepository(db)
    known = repo.known_addresses()
    discovered = [
        DiscoveredDevice(
            device_id=live.device_id,
            device_name=live.device_name,
            ip_address=live.ip_address,
            mac_address=live.mac_address,
            firmware_version=live.firmware_version,
            power_state=live.power_state,
            already_added=live.ip_address in known or repo.exists(live.device_id),
        )
        for live in found
    ]
    return DiscoverResult(discovered_devices=discovered, **summary)


@router.get("/{device_id}", response_model=DeviceRead)
def get_device(device_id: str, db: Session = Depends(get_db)):
    return _get_device(DeviceRepository(db), device_id)


@router.patch("/{device_id}", response_model=DeviceRead)
async def update_device(
    device_id: str,
    body: DeviceUpdate,
    db: Session = Depends(get_db),
    service: TasmotaService = Depends(get_tasmota_service),
):
    device = _get_device(DeviceRepository(db), device_id)
    changes = body.model_dump(exclude_unset=True, exclude={"push_name_to_device"})
    if "ip_address" in changes and changes["ip_address"] is not None:
        changes["ip_address"] = str(changes["ip_address"])

    if body.push_name_to_device and body.device_name:
        result = await service.set_device_name(changes.get("ip_address") or device.ip_address, body.device_name)
        if not result.success:
            raise _offline_error(f"Could not set the name on the device: {result.error}")

    for field, value in changes.items():
        # only the description may be cleared
        if value is None and field != "description":
            continue
        setattr(device, field, value)
    db.commit()
    db.refresh(device)
    logger.info(f"Device {device_id} updated: {', '.join(changes) or 'no changes'}")
    return device


@router.delete("/{device_id}", dependencies=[Depends(is_admin)])
def delete_device(device_id: str, db: Session = Depends(get_db)):
    device = _get_device(DeviceRepository(db), device_id)
    db.delete(device)
    db.commit()
    logger.info(f"Device {device_id} deleted")
    return {"message": "Device deleted successfully"}


@router.put("/{device_id}/category", response_model=DeviceRead)
def assign_category(device_id: str, body: CategoryAssignment, db: Session = Depends(get_db)):
    device = _get_device(DeviceRepository(db), device_id)
    if body.category_id and CategoryRepository(db).get(body.category_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    device.category_id = body.category_id
    db.commit()
    db.refresh(device)
    return device


@router.patch("/{device_id}/critical", response_model=DeviceRead)
def set_device_critical(device_id: str, body: CriticalUpdate, db: Session = Depends(get_db)):
    device = _get_device(DeviceRepository(db), device_id)
    device.is_critical = body.is_critical
    db.commit()
    db.refresh(device)
    logger.info(f"Device {device_id} critical flag set to {body.is_critical}")
    return device


@router.post("/{device_id}/cleanup", response_model=CleanupResult)
def cleanup_device_readings(device_id: str, db: Session = Depends(get_db)):
    """Delete readings older than the device's retention window now instead of at the next poll."""
    repo = DeviceRepository(db)
    device = _get_device(repo, device_id)
    removed = repo.prune_readings(device)
    db.commit()
    return CleanupResult(
        message=f"Cleaned up {removed} old energy readings",
        deleted_count=removed,
        device_id=device.device_id,
        device_name=device.device_name,
    )


@router.get("/{device_id}/storage", response_model=DeviceStorageDetail)
def get_device_storage(device_id: str, db: Session = Depends(get_db)):
    repo = DeviceRepository(db)
    return device_storage_detail(repo, _get_device(repo, device_id))


@router.post("/{device_id}/toggle", response_model=DeviceRead)
async def toggle_device(
    device_id: str,
    db: Session = Depends(get_db),
    service: TasmotaService = Depends(get_tasmota_service),
):
    """Toggle relay 1, the relay whose state is stored as the device power_state."""
    repo = DeviceRepository(db)
    device = _get_device(repo, device_id)

    result = await service.toggle(device.ip_address)
    if not result.success:
        repo.mark_offline(device)
        db.commit()
        raise _offline_error(f"Device is not responding: {result.error or 'Unknown error'}. It may be offline.")

    repo.set_power_state(device, result.power_state)

    # The toggle reply is authoritative for power_state. The follow-up poll only
    # refreshes telemetry; it may have been answered before the relay settled.
    live = await service.get_status(device.ip_address, env.DEVICE_TIMEOUT_MS)
    if live.online:
        repo.apply_status(device, live, power_state=result.power_state)

    db.commit()
    db.refresh(device)
    return device


@router.post("/{device_id}/power", response_model=DeviceRead)
async def set_device_power(
    device_id: str,
    body: PowerRequest,
    db: Session = Depends(get_db),
    service: TasmotaService = Depends(get_tasmota_service),
):
    repo = DeviceRepository(db)
    device = _get_device(repo, device_id)

    result = await service.set_power(device.ip_address, body.state.as_bool())
    if not result.success:
        repo.mark_offline(device)
        db.commit()
        raise _offline_error(f"Device is not responding: {result.error or 'Unknown error'}. It may be offline.")

    repo.set_power_state(device, result.power_state)
    db.commit()
    db.refresh(device)
    return device


@router.get("/{device_id}/status", response_model=CanonicalDeviceStatus)
async def get_device_status(
    device_id: str,
    db: Session = Depends(get_db),
    service: TasmotaService = Depends(get_tasmota_service),
):
    repo = DeviceRepository(db)
    device = _get_device(repo, device_id)

    live = await service.get_status(device.ip_address)
    repo.apply_status(device, live)
    db.commit()
    if not live.online:
        raise _offline_error(f"Device {device_id} is not responding")
    return live


@router.get("/{device_id}/energy", response_model=EnergyData)
async def get_device_energy(
    device_id: str,
    db: Session = Depends(get_db),
    service: TasmotaService = Depends(get_tasmota_service),
):
    device = _get_device(DeviceRepository(db), device_id)
    energy = await service.get_energy_data(device.ip_address)
    if energy is None:
        raise _offline_error(f"Device {device_id} is not responding")
    return energy


@router.get("/{device_id}/metrics", response_model=DeviceMetrics)
def get_device_metrics(device_id: str, db: Session = Depends(get_db)):
    return derive_metrics(_get_device(DeviceRepository(db), device_id))


@router.get("/{device_id}/history", response_model=DeviceHistory)
def get_device_history(
    device_id: str,
    limit: int = Query(100, ge=1, le=1000),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    start_date, end_date = _naive_utc(start_date), _naive_utc(end_date)
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Start date must be before end date")

    repo = DeviceRepository(db)
    device = _get_device(repo, device_id)
    readings = repo.readings(device, start_date, end_date, limit)
    return DeviceHistory(
        device_id=device.device_id,
        device_name=device.device_name,
        limit=limit,
        readings=[EnergyReadingRead.model_validate(reading) for reading in readings],
        stats=history_stats(readings),
    )
