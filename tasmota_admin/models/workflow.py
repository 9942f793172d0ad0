from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tasmota_admin.models.enums import ExecutionStatus, PowerState, WorkflowAction


class ConditionIn(BaseModel):
    device_id: str = Field(..., min_length=1)
    state: PowerState


class StepIn(BaseModel):
    """
    One workflow step as submitted by the client. Position in the list is the order.
    """
    device_id: Optional[str] = Field(None, description="Target device; required for TURN_ON and TURN_OFF")
    action: WorkflowAction
    delay: Optional[int] = Field(None, ge=0, description="Seconds to wait; required for DELAY")
    conditions: List[ConditionIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_action_fields(self) -> "StepIn":
        if self.action is WorkflowAction.DELAY:
            if self.delay is None:
                raise ValueError("delay is required for DELAY steps")
        elif not self.device_id:
            raise ValueError(f"device_id is required for {self.action.value} steps")
        return self


class WorkflowCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    enabled: bool = True
    steps: List[StepIn] = Field(default_factory=list)


class WorkflowUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    enabled: Optional[bool] = None
    steps: Optional[List[StepIn]] = None


class ConditionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    device_id: str
    state: PowerState


class StepRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    device_id: Optional[str] = None
    action: WorkflowAction
    delay: Optional[int] = None
    order: int
    conditions: List[ConditionRead] = Field(default_factory=list)


class WorkflowRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    enabled: bool
    created_at: datetime
    updated_at: datetime
    steps: List[StepRead] = Field(default_factory=list)


class StepResult(BaseModel):
    """One entry of the step-result stream produced while a workflow runs."""
    step_id: str
    order: int
    action: WorkflowAction
    device_id: Optional[str] = None
    success: bool
    message: str
    started_at: datetime
    finished_at: datetime


class ExecutionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workflow_id: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    step_results: List[StepResult] = Field(default_factory=list)


class ExecutionOutcome(BaseModel):
    success: bool
    execution_id: str
    message: str
    steps: List[StepResult] = Field(default_factory=list)
