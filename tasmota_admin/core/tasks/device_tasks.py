"""
Device persistence and polling tasks.

``persist_device_status`` stores a status the API already fetched live.
``refresh_all_devices`` runs on Celery beat: it polls every registered
device, stores the result, records energy readings and prunes old ones.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from celery_app import app
from tasmota_admin.core.tasks.common import TaskMetrics, run_task_with_new_loop
from tasmota_admin.db.repository import DeviceRepository
from tasmota_admin.db.session import session_scope
from tasmota_admin.models.device import CanonicalDeviceStatus, EnergyData
from tasmota_admin.services.tasmota import TasmotaService, build_tasmota_service

logger = logging.getLogger(__name__)

PollResult = Tuple[CanonicalDeviceStatus, Optional[EnergyData]]


@app.task
def persist_device_status(device_id: str, status: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fold a live status, serialized as JSON, into the stored device.
    """
    with TaskMetrics("persist_device_status") as metrics:
        live = CanonicalDeviceStatus.model_validate(status)
        with session_scope() as db:
            repo = DeviceRepository(db)
            device = repo.get(device_id)
            if device is None:
                logger.warning(f"Device {device_id} was removed before its status could be stored")
                return {"device_id": device_id, "updated": False}
            repo.apply_status(device, live)
            metrics.increment("processed")
        return {"device_id": device_id, "updated": True, "status": live.status}


async def _poll(service: TasmotaService, address: str) -> PollResult:
    status, energy = await asyncio.gather(
        service.get_status(address),
        service.get_energy_data(address),
    )
    return status, energy


async def poll_devices(service: TasmotaService, targets: List[Tuple[str, str]]) -> Dict[str, PollResult]:
    """Poll ``(device_id, address)`` pairs concurrently. A device that raises is left out."""
    results = await asyncio.gather(*(_poll(service, address) for _, address in targets), return_exceptions=True)
    polled = {}
    for (device_id, address), result in zip(targets, results):
        if isinstance(result, Exception):
            logger.error(f"Polling {device_id} at {address} failed: {result}")
            continue
        polled[device_id] = result
    return polled


@app.task
@run_task_with_new_loop
async def refresh_all_devices() -> Dict[str, Any]:
    """
    Poll all devices and store their state.
    Runs periodically via Celery Beat.
    """
    with TaskMetrics("refresh_all_devices") as metrics:
        with session_scope() as db:
            targets = [(device.device_id, device.ip_address) for device in DeviceRepository(db).list()]

        if not targets:
            return {"total": 0, "online": 0, "readings": 0, "pruned": 0}

        service = build_tasmota_service()
        try:
            polled = await poll_devices(service, targets)
        finally:
            await service.close()

        summary = {"total": len(targets), "online": 0, "readings": 0, "pruned": 0}
        with session_scope() as db:
            repo = DeviceRepository(db)
            for device_id, (status, energy) in polled.items():
                device = repo.get(device_id)
                if device is None:
                    continue
                repo.apply_status(device, status)
                metrics.increment("processed")
                if status.online:
                    summary["online"] += 1
                    if energy is not None and energy.has_energy_monitoring:
                        if repo.add_energy_reading(device, energy) is not None:
                            summary["readings"] += 1
                summary["pruned"] += repo.prune_readings(device)

        metrics.set("errors", len(targets) - len(polled))
        logger.info(f"Refreshed {summary['total']} devices, {summary['online']} online, {summary['readings']} readings recorded")
        return summary
