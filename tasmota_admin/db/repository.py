"""
Query and update helpers shared by the API routes, the workflow runner and the Celery tasks.

Repositories never commit on their own except where noted; the caller owns
the transaction.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from tasmota_admin.db.models import (
    Category,
    Device,
    EnergyReading,
    Workflow,
    WorkflowCondition,
    WorkflowExecution,
    WorkflowStep,
    utcnow,
)
from tasmota_admin.models.device import CanonicalDeviceStatus, EnergyData
from tasmota_admin.models.enums import DeviceStatus, ExecutionStatus
from tasmota_admin.models.workflow import StepIn, StepResult

logger = logging.getLogger(__name__)


class DeviceRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, device_id: str) -> Optional[Device]:
        return self.db.query(Device).filter(Device.device_id == device_id).first()

    def list(self, category_id: Optional[str] = None) -> List[Device]:
        query = self.db.query(Device).options(selectinload(Device.category))
        if category_id:
            query = query.filter(Device.category_id == category_id)
        return query.order_by(Device.device_name).all()

    def exists(self, device_id: str) -> bool:
        return self.db.query(Device.id).filter(Device.device_id == device_id).first() is not None

    def known_addresses(self) -> set:
        return {row[0] for row in self.db.query(Device.ip_address).all()}

    def apply_status(
        self,
        device: Device,
        status: CanonicalDeviceStatus,
        power_state: Optional[bool] = None,
    ) -> Device:
        """
        Fold a live status into the stored device.

        ``power_state`` overrides the value reported in ``status``; the toggle
        route passes the toggle result here so a later poll cannot revert it.
        An offline status only flips the device to OFFLINE and keeps the last
        known telemetry.
        """
        if not status.online:
            return self.mark_offline(device)

        device.status = DeviceStatus.ONLINE
        device.power_state = status.power_state if power_state is None else power_state
        device.energy_consumption = status.energy_consumption
        device.total_energy = status.total_energy
        device.wifi_signal = status.wifi_signal
        device.uptime = status.uptime
        device.voltage = status.voltage
        device.current = status.current
        if status.firmware_version and status.firmware_version != "unknown":
            device.firmware_version = status.firmware_version
        if status.mac_address:
            device.mac_address = status.mac_address
        device.last_seen = status.last_seen
        return device

    def set_power_state(self, device: Device, power_state: bool) -> Device:
        device.power_state = power_state
        device.status = DeviceStatus.ONLINE
        device.last_seen = utcnow()
        return device

    def mark_offline(self, device: Device) -> Device:
        if device.status != DeviceStatus.OFFLINE:
            logger.info(f"Device {device.device_id} marked offline")
        device.status = DeviceStatus.OFFLINE
        return device

    # ------------------- Energy history -------------------

    def last_reading(self, device: Device) -> Optional[EnergyReading]:
        return (
            self.db.query(EnergyReading)
            .filter(EnergyReading.device_pk == device.id)
            .order_by(EnergyReading.timestamp.desc())
            .first()
        )

    def add_energy_reading(self, device: Device, energy: EnergyData, now: Optional[datetime] = None) -> Optional[EnergyReading]:
        """
        Record a reading unless logging is off or the last one is younger than
        ``min_log_interval_seconds``.
        """
        if not device.enable_data_logging:
            return None
        now = now or utcnow()
        last = self.last_reading(device)
        if last is not None and (now - last.timestamp).total_seconds() < device.min_log_interval_seconds:
            return None

        reading = EnergyReading(
            device_pk=device.id,
            power=energy.power,
            energy=energy.total,
            voltage=energy.voltage,
            current=energy.current,
            timestamp=now,
        )
        self.db.add(reading)
        return reading

    def readings(
        self,
        device: Device,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[EnergyReading]:
        query = self.db.query(EnergyReading).filter(EnergyReading.device_pk == device.id)
        if start is not None:
            query = query.filter(EnergyReading.timestamp >= start)
        if end is not None:
            query = query.filter(EnergyReading.timestamp <= end)
        return query.order_by(EnergyReading.timestamp.desc()).limit(limit).all()

    def reading_count(self, device: Device, since: Optional[datetime] = None) -> int:
        query = self.db.query(func.count(EnergyReading.id)).filter(EnergyReading.device_pk == device.id)
        if since is not None:
            query = query.filter(EnergyReading.timestamp >= since)
        return query.scalar()

    def reading_span(self, device: Device) -> Tuple[Optional[datetime], Optional[datetime]]:
        """Timestamps of the oldest and newest stored reading."""
        return (
            self.db.query(func.min(EnergyReading.timestamp), func.max(EnergyReading.timestamp))
            .filter(EnergyReading.device_pk == device.id)
            .one()
        )

    def prune_readings(self, device: Device, now: Optional[datetime] = None) -> int:
        cutoff = (now or utcnow()) - timedelta(days=device.data_retention_days)
        removed = (
            self.db.query(EnergyReading)
            .filter(EnergyReading.device_pk == device.id, EnergyReading.timestamp < cutoff)
            .delete(synchronize_session=False)
        )
        if removed:
            logger.info(f"Pruned {removed} energy readings of {device.device_id} older than {cutoff}")
        return removed


class CategoryRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, category_id: str) -> Optional[Category]:
        return self.db.get(Category, category_id)

    def get_by_name(self, name: str) -> Optional[Category]:
        return self.db.query(Category).filter(Category.name == name).first()

    def list_with_counts(self) -> list:
        return (
            self.db.query(Category, func.count(Device.id))
            .outerjoin(Device, Device.category_id == Category.id)
            .group_by(Category.id)
            .order_by(Category.name)
            .all()
        )

    def device_count(self, category: Category) -> int:
        return self.db.query(func.count(Device.id)).filter(Device.category_id == category.id).scalar()

    def device_counts(self) -> list:
        """(category_id, name, color, count) per category that has devices; category_id None for the rest."""
        return (
            self.db.query(Device.category_id, Category.name, Category.color, func.count(Device.id))
            .outerjoin(Category, Category.id == Device.category_id)
            .group_by(Device.category_id, Category.name, Category.color)
            .order_by(Category.name)
            .all()
        )


class WorkflowRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, workflow_id: str) -> Optional[Workflow]:
        return (
            self.db.query(Workflow)
            .options(selectinload(Workflow.steps).selectinload(WorkflowStep.conditions))
            .filter(Workflow.id == workflow_id)
            .first()
        )

    def list(self) -> List[Workflow]:
        return (
            self.db.query(Workflow)
            .options(selectinload(Workflow.steps).selectinload(WorkflowStep.conditions))
            .order_by(Workflow.created_at.desc())
            .all()
        )

    def replace_steps(self, workflow: Workflow, steps: List[StepIn]) -> None:
        """Replace all steps; list position becomes the step order."""
        workflow.steps.clear()
        self.db.flush()
        for order, step in enumerate(steps):
            workflow.steps.append(
                WorkflowStep(
                    device_id=step.device_id,
                    action=step.action,
                    delay=step.delay,
                    order=order,
                    conditions=[
                        WorkflowCondition(device_id=condition.device_id, state=condition.state)
                        for condition in step.conditions
                    ],
                )
            )

    def create_execution(self, workflow: Workflow) -> WorkflowExecution:
        execution = WorkflowExecution(workflow_id=workflow.id, status=ExecutionStatus.RUNNING, step_results=[])
        self.db.add(execution)
        self.db.commit()
        return execution

    def finish_execution(
        self,
        execution: WorkflowExecution,
        results: List[StepResult],
        error_message: Optional[str] = None,
    ) -> WorkflowExecution:
        """Move a RUNNING execution to its terminal status. Commits."""
        if execution.status != ExecutionStatus.RUNNING:
            raise ValueError(f"Execution {execution.id} already finished as {execution.status.value}")
        execution.status = ExecutionStatus.FAILED if error_message else ExecutionStatus.COMPLETED
        execution.error_message = error_message
        execution.completed_at = utcnow()
        execution.step_results = [result.model_dump(mode="json") for result in results]
        self.db.commit()
        return execution

    def executions(self, workflow: Workflow, limit: int = 50) -> List[WorkflowExecution]:
        return (
            self.db.query(WorkflowExecution)
            .filter(WorkflowExecution.workflow_id == workflow.id)
            .order_by(WorkflowExecution.started_at.desc())
            .limit(limit)
            .all()
        )
