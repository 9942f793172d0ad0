import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from tasmota_admin.core.exceptions import WorkflowNotFoundError
from tasmota_admin.db.models import Workflow
from tasmota_admin.db.repository import DeviceRepository, WorkflowRepository
from tasmota_admin.db.session import get_db
from tasmota_admin.models.workflow import (
    ExecutionOutcome,
    ExecutionRead,
    StepIn,
    WorkflowCreate,
    WorkflowRead,
    WorkflowUpdate,
)
from tasmota_admin.services.tasmota import TasmotaService
from tasmota_admin.services.workflow_runner import WorkflowRunner
from tasmota_admin.utils.dependencies import get_tasmota_service, is_authenticated

router = APIRouter(prefix="/workflows", tags=["Workflows"], dependencies=[Depends(is_authenticated)])
logger = logging.getLogger(__name__)


def get_workflow_runner(
    db: Session = Depends(get_db),
    service: TasmotaService = Depends(get_tasmota_service),
) -> WorkflowRunner:
    return WorkflowRunner(db, service)


def _get_workflow(repo: WorkflowRepository, workflow_id: str) -> Workflow:
    workflow = repo.get(workflow_id)
    if workflow is None:
        raise WorkflowNotFoundError(workflow_id)
    return workflow


def _check_devices(db: Session, steps: List[StepIn]) -> None:
    devices = DeviceRepository(db)
    referenced = {step.device_id for step in steps if step.device_id}
    referenced |= {condition.device_id for step in steps for condition in step.conditions}
    missing = sorted(device_id for device_id in referenced if not devices.exists(device_id))
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Unknown device in workflow", "details": missing},
        )


@router.get("", response_model=List[WorkflowRead])
def list_workflows(db: Session = Depends(get_db)):
    return WorkflowRepository(db).list()


@router.post("", response_model=WorkflowRead, status_code=status.HTTP_201_CREATED)
def create_workflow(body: WorkflowCreate, db: Session = Depends(get_db)):
    _check_devices(db, body.steps)
    repo = WorkflowRepository(db)
    workflow = Workflow(name=body.name, description=body.description, enabled=body.enabled)
    db.add(workflow)
    repo.replace_steps(workflow, body.steps)
    db.commit()
    logger.info(f"Workflow '{workflow.name}' created with {len(body.steps)} steps")
    return repo.get(workflow.id)


@router.get("/{workflow_id}", response_model=WorkflowRead)
def get_workflow(workflow_id: str, db: Session = Depends(get_db)):
    return _get_workflow(WorkflowRepository(db), workflow_id)


@router.put("/{workflow_id}", response_model=WorkflowRead)
def update_workflow(workflow_id: str, body: WorkflowUpdate, db: Session = Depends(get_db)):
    repo = WorkflowRepository(db)
    workflow = _get_workflow(repo, workflow_id)

    if body.name is not None:
        workflow.name = body.name
    if "description" in body.model_fields_set:
        workflow.description = body.description
    if body.enabled is not None:
        workflow.enabled = body.enabled
    if body.steps is not None:
        _check_devices(db, body.steps)
        repo.replace_steps(workflow, body.steps)

    db.commit()
    db.expire_all()
    return repo.get(workflow_id)


@router.delete("/{workflow_id}")
def delete_workflow(workflow_id: str, db: Session = Depends(get_db)):
    workflow = _get_workflow(WorkflowRepository(db), workflow_id)
    db.delete(workflow)
    db.commit()
    logger.info(f"Workflow {workflow_id} deleted")
    return {"message": "Workflow deleted successfully"}


@router.post("/{workflow_id}/execute", response_model=ExecutionOutcome)
async def execute_workflow(workflow_id: str, runner: WorkflowRunner = Depends(get_workflow_runner)):
    """
    Run the workflow now and answer when it has finished.
    A failed run answers 500 with the execution id so the record can be looked up.
    """
    outcome = await runner.execute(workflow_id)
    if not outcome.success:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Workflow execution failed",
                "message": outcome.message,
                "execution_id": outcome.execution_id,
                "steps": [step.model_dump(mode="json") for step in outcome.steps],
            },
        )
    return outcome


@router.get("/{workflow_id}/executions", response_model=List[ExecutionRead])
def list_executions(
    workflow_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    repo = WorkflowRepository(db)
    return repo.executions(_get_workflow(repo, workflow_id), limit)
