"""Tests for the workflow routes."""

import pytest
from fastapi import Depends
from sqlalchemy.orm import Session

from tasmota_admin.api.workflows import get_workflow_runner
from tasmota_admin.db.session import get_db
from tasmota_admin.main import app
from tasmota_admin.services.tasmota import TasmotaService
from tasmota_admin.services.workflow_runner import WorkflowRunner
from tasmota_admin.utils.dependencies import get_tasmota_service

from tests.fakes import FakePlug


async def no_sleep(seconds: float) -> None:
    return None


def runner_without_pause(
    db: Session = Depends(get_db),
    service: TasmotaService = Depends(get_tasmota_service),
) -> WorkflowRunner:
    return WorkflowRunner(db, service, sleep=no_sleep)


@pytest.fixture
def fast_runner(client):
    app.dependency_overrides[get_workflow_runner] = runner_without_pause
    yield
    app.dependency_overrides.pop(get_workflow_runner, None)


@pytest.fixture
def plugs(network, make_device):
    make_device("fan", "10.0.7.1", power_state=False)
    make_device("heater", "10.0.7.2", power_state=False)
    return {
        "fan": network.add("10.0.7.1", FakePlug("fan")),
        "heater": network.add("10.0.7.2", FakePlug("heater")),
    }


def create(client, steps, **fields):
    body = {"name": "Morning", "steps": steps, **fields}
    return client.post("/api/workflows", json=body)


def test_create_workflow_orders_steps(client, plugs):
    response = create(client, [
        {"action": "TURN_ON", "device_id": "fan"},
        {"action": "DELAY", "delay": 5},
        {"action": "TURN_ON", "device_id": "heater", "conditions": [{"device_id": "fan", "state": "ON"}]},
    ])

    assert response.status_code == 201
    steps = response.json()["steps"]
    assert [step["order"] for step in steps] == [0, 1, 2]
    assert steps[2]["conditions"][0]["state"] == "ON"


def test_create_workflow_requires_device_for_power_steps(client):
    response = create(client, [{"action": "TURN_ON"}])

    assert response.status_code == 400
    assert response.json()["error"] == "Validation failed"


def test_create_workflow_requires_delay(client):
    response = create(client, [{"action": "DELAY"}])

    assert response.status_code == 400


def test_create_workflow_unknown_device(client):
    response = create(client, [{"action": "TURN_ON", "device_id": "ghost"}])

    assert response.status_code == 400
    assert response.json()["details"] == ["ghost"]


def test_update_workflow_replaces_steps(client, plugs):
    workflow_id = create(client, [{"action": "TURN_ON", "device_id": "fan"}]).json()["id"]

    response = client.put(
        f"/api/workflows/{workflow_id}",
        json={"enabled": False, "steps": [{"action": "TURN_OFF", "device_id": "heater"}, {"action": "DELAY", "delay": 1}]},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["enabled"] is False
    assert [step["action"] for step in body["steps"]] == ["TURN_OFF", "DELAY"]


def test_list_and_delete_workflow(client, plugs):
    workflow_id = create(client, [{"action": "DELAY", "delay": 1}]).json()["id"]

    listed = client.get("/api/workflows")
    deleted = client.delete(f"/api/workflows/{workflow_id}")
    fetched = client.get(f"/api/workflows/{workflow_id}")

    assert [workflow["id"] for workflow in listed.json()] == [workflow_id]
    assert deleted.status_code == 200
    assert fetched.status_code == 404
    assert fetched.json() == {"error": "Workflow not found"}


def test_execute_workflow(client, plugs, fast_runner):
    workflow_id = create(client, [
        {"action": "TURN_ON", "device_id": "fan"},
        {"action": "TURN_ON", "device_id": "heater", "conditions": [{"device_id": "fan", "state": "ON"}]},
    ]).json()["id"]

    response = client.post(f"/api/workflows/{workflow_id}/execute")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert len(body["steps"]) == 2
    assert plugs["fan"].power is True
    assert plugs["heater"].power is True

    executions = client.get(f"/api/workflows/{workflow_id}/executions").json()
    assert executions[0]["id"] == body["execution_id"]
    assert executions[0]["status"] == "COMPLETED"
    assert len(executions[0]["step_results"]) == 2


def test_execute_workflow_failure(client, plugs, fast_runner):
    workflow_id = create(client, [
        {"action": "TURN_ON", "device_id": "heater", "conditions": [{"device_id": "fan", "state": "ON"}]},
    ]).json()["id"]

    response = client.post(f"/api/workflows/{workflow_id}/execute")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Workflow execution failed"
    assert body["message"] == "Condition failed: Device fan is OFF, expected ON"
    assert body["execution_id"]
    assert plugs["heater"].power is False

    executions = client.get(f"/api/workflows/{workflow_id}/executions").json()
    assert executions[0]["status"] == "FAILED"
    assert executions[0]["error_message"] == body["message"]


def test_execute_disabled_workflow(client, plugs, fast_runner):
    workflow_id = create(client, [{"action": "DELAY", "delay": 1}], enabled=False).json()["id"]

    response = client.post(f"/api/workflows/{workflow_id}/execute")

    assert response.status_code == 400
    assert response.json() == {"error": "Workflow is disabled"}
    assert client.get(f"/api/workflows/{workflow_id}/executions").json() == []


def test_execute_missing_workflow(client, fast_runner):
    response = client.post("/api/workflows/missing/execute")

    assert response.status_code == 404
