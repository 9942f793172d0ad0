"""
Sequential workflow execution.

A run walks the steps in ascending order. Each step first checks its
conditions against the stored device power state, then performs its action:
switching a device through the device facade or sleeping for DELAY steps.
The first failing step ends the run and the execution is marked FAILED.
"""
import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from tasmota_admin.core.env_settings import env
from tasmota_admin.core.exceptions import WorkflowDisabledError, WorkflowNotFoundError
from tasmota_admin.db.models import Workflow, WorkflowCondition, WorkflowStep, utcnow
from tasmota_admin.db.repository import DeviceRepository, WorkflowRepository
from tasmota_admin.models.enums import PowerState, WorkflowAction
from tasmota_admin.models.workflow import ExecutionOutcome, StepResult
from tasmota_admin.services.tasmota import TasmotaService

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

Sleep = Callable[[float], Awaitable[None]]


class WorkflowRunner:
    def __init__(
        self,
        db: Session,
        service: TasmotaService,
        step_pause: float = env.WORKFLOW_STEP_PAUSE_SECONDS,
        action_timeout_ms: int = env.WORKFLOW_ACTION_TIMEOUT_MS,
        sleep: Sleep = asyncio.sleep,
    ):
        self.db = db
        self.service = service
        self.step_pause = step_pause
        self.action_timeout_ms = action_timeout_ms
        self.sleep = sleep
        self.devices = DeviceRepository(db)
        self.workflows = WorkflowRepository(db)

    async def execute(self, workflow_id: str) -> ExecutionOutcome:
        """
        Run a workflow to completion and record the execution.

        Raises:
            WorkflowNotFoundError: no workflow with this id
            WorkflowDisabledError: the workflow exists but is disabled
        """
        workflow = self.workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        if not workflow.enabled:
            raise WorkflowDisabledError(workflow_id)

        execution = self.workflows.create_execution(workflow)
        logger.info(f"Executing workflow '{workflow.name}' ({len(workflow.steps)} steps), execution {execution.id}")

        results: List[StepResult] = []
        error: Optional[str] = None
        try:
            async for result in self.run_steps(workflow):
                results.append(result)
                if not result.success:
                    error = result.message
        except Exception as e:
            logger.error(f"Workflow '{workflow.name}' crashed: {e}", exc_info=True)
            self.db.rollback()
            error = f"Unexpected error: {e}"

        self.workflows.finish_execution(execution, results, error)

        if error:
            logger.error(f"Workflow '{workflow.name}' failed: {error}")
            return ExecutionOutcome(success=False, execution_id=execution.id, message=error, steps=results)

        logger.info(f"Workflow '{workflow.name}' completed successfully")
        return ExecutionOutcome(
            success=True,
            execution_id=execution.id,
            message=f'Workflow "{workflow.name}" executed successfully',
            steps=results,
        )

    async def run_steps(self, workflow: Workflow) -> AsyncIterator[StepResult]:
        """Yield one result per step; stops after the first failure."""
        for step in sorted(workflow.steps, key=lambda s: s.order):
            started_at = utcnow()
            logger.info(f"Step {step.order + 1}: {step.action.value} {step.device_id or ''}".rstrip())

            success, message = self._check_conditions(step)
            if success:
                success, message = await self._perform(step)

            yield StepResult(
                step_id=step.id,
                order=step.order,
                action=step.action,
                device_id=step.device_id,
                success=success,
                message=message,
                started_at=started_at,
                finished_at=utcnow(),
            )
            if not success:
                return

            await self.sleep(self.step_pause)

    def _check_conditions(self, step: WorkflowStep) -> Tuple[bool, str]:
        for condition in step.conditions:
            ok, message = self._check_condition(condition)
            if not ok:
                logger.warning(message)
                return False, message
        return True, "Conditions met"

    def _check_condition(self, condition: WorkflowCondition) -> Tuple[bool, str]:
        device = self.devices.get(condition.device_id)
        if device is None:
            return False, f"Condition failed: Device {condition.device_id} not found"

        # earlier steps may have switched this device
        self.db.refresh(device)
        actual = PowerState.from_bool(device.power_state)
        if actual is not condition.state:
            return False, (
                f"Condition failed: Device {condition.device_id} is {actual.value}, "
                f"expected {condition.state.value}"
            )
        return True, ""

    async def _perform(self, step: WorkflowStep) -> Tuple[bool, str]:
        if step.action is WorkflowAction.DELAY:
            if step.delay and step.delay > 0:
                logger.info(f"Waiting {step.delay} seconds")
                await self.sleep(step.delay)
                return True, f"Waited {step.delay} seconds"
            return True, "No delay"

        if step.action in (WorkflowAction.TURN_ON, WorkflowAction.TURN_OFF):
            return await self._switch(step.device_id, step.action is WorkflowAction.TURN_ON)

        return False, f"Unknown action: {step.action}"

    async def _switch(self, device_id: Optional[str], desired: bool) -> Tuple[bool, str]:
        verb = "on" if desired else "off"
        device = self.devices.get(device_id) if device_id else None
        if device is None:
            return False, f"Failed to turn {verb} device {device_id}: device not found"

        result = await self.service.set_power(device.ip_address, desired, timeout_ms=self.action_timeout_ms)
        if not result.success:
            self.devices.mark_offline(device)
            self.db.commit()
            return False, f"Failed to turn {verb} device {device.device_name}: {result.error}"

        self.devices.set_power_state(device, desired if result.power_state is None else result.power_state)
        self.db.commit()
        logger.info(f"Turned {verb.upper()} device {device.device_name}")
        return True, f"Turned {verb.upper()} device {device.device_name}"
