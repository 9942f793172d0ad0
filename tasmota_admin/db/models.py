import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from tasmota_admin.db.session import Base
from tasmota_admin.models.enums import DeviceStatus, ExecutionStatus, PowerState, WorkflowAction


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite does not keep tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


class Category(Base):
    __tablename__ = "categories"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False, unique=True)
    color = Column(String, nullable=False)
    icon = Column(String)
    description = Column(String)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    devices = relationship("Device", back_populates="category")


class Device(Base):
    __tablename__ = "devices"

    id = Column(String, primary_key=True, default=new_id)
    device_id = Column(String, nullable=False, unique=True, index=True)
    device_name = Column(String, nullable=False)
    ip_address = Column(String, nullable=False)
    mac_address = Column(String)
    firmware_version = Column(String, nullable=False)
    description = Column(String)
    category_id = Column(String, ForeignKey("categories.id", ondelete="SET NULL"))
    is_critical = Column(Boolean, nullable=False, default=False)

    status = Column(Enum(DeviceStatus), nullable=False, default=DeviceStatus.OFFLINE)
    power_state = Column(Boolean, nullable=False, default=False)
    energy_consumption = Column(Float, nullable=False, default=0.0)
    total_energy = Column(Float, nullable=False, default=0.0)
    wifi_signal = Column(Integer, nullable=False, default=-70)
    uptime = Column(Integer, nullable=False, default=0)
    voltage = Column(Float)
    current = Column(Float)

    # Energy history logging
    enable_data_logging = Column(Boolean, nullable=False, default=True)
    data_retention_days = Column(Integer, nullable=False, default=30)
    min_log_interval_seconds = Column(Integer, nullable=False, default=60)

    last_seen = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    category = relationship("Category", back_populates="devices")
    energy_readings = relationship(
        "EnergyReading", back_populates="device", cascade="all, delete-orphan", passive_deletes=True
    )


class EnergyReading(Base):
    __tablename__ = "energy_readings"

    id = Column(String, primary_key=True, default=new_id)
    device_pk = Column(String, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True)
    power = Column(Float, nullable=False)
    energy = Column(Float, nullable=False)
    voltage = Column(Float)
    current = Column(Float)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)

    device = relationship("Device", back_populates="energy_readings")


class Workflow(Base):
    __tablename__ = "workflows"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    description = Column(Text)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    steps = relationship(
        "WorkflowStep",
        back_populates="workflow",
        order_by="WorkflowStep.order",
        cascade="all, delete-orphan",
    )
    executions = relationship(
        "WorkflowExecution",
        back_populates="workflow",
        order_by="WorkflowExecution.started_at.desc()",
        cascade="all, delete-orphan",
    )


class WorkflowStep(Base):
    __tablename__ = "workflow_steps"

    id = Column(String, primary_key=True, default=new_id)
    workflow_id = Column(String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False)
    device_id = Column(String, ForeignKey("devices.device_id", ondelete="CASCADE"))
    action = Column(Enum(WorkflowAction), nullable=False)
    delay = Column(Integer)
    order = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    workflow = relationship("Workflow", back_populates="steps")
    conditions = relationship("WorkflowCondition", back_populates="step", cascade="all, delete-orphan")


class WorkflowCondition(Base):
    __tablename__ = "workflow_conditions"

    id = Column(String, primary_key=True, default=new_id)
    step_id = Column(String, ForeignKey("workflow_steps.id", ondelete="CASCADE"), nullable=False)
    device_id = Column(String, ForeignKey("devices.device_id", ondelete="CASCADE"), nullable=False)
    state = Column(Enum(PowerState), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    step = relationship("WorkflowStep", back_populates="conditions")


class WorkflowExecution(Base):
    __tablename__ = "workflow_executions"

    id = Column(String, primary_key=True, default=new_id)
    workflow_id = Column(String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(Enum(ExecutionStatus), nullable=False, default=ExecutionStatus.RUNNING)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime)
    error_message = Column(Text)
    step_results = Column(JSON, nullable=False, default=list)

    workflow = relationship("Workflow", back_populates="executions")
