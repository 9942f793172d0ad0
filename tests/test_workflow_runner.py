"""Tests for sequential workflow execution."""

import asyncio

import pytest

from tasmota_admin.core.exceptions import WorkflowDisabledError, WorkflowNotFoundError
from tasmota_admin.db.models import Device, Workflow, WorkflowExecution
from tasmota_admin.db.repository import WorkflowRepository
from tasmota_admin.models.enums import DeviceStatus, ExecutionStatus, WorkflowAction
from tasmota_admin.models.workflow import StepIn
from tasmota_admin.services.workflow_runner import WorkflowRunner

from tests.fakes import FakePlug

PAUSE = 0.5


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def runner(db_session, service, sleep):
    return WorkflowRunner(db_session, service, step_pause=PAUSE, action_timeout_ms=500, sleep=sleep)


@pytest.fixture
def plugs(network, make_device):
    """Two registered plugs, both off."""
    make_device("plug_a", "10.0.1.1", power_state=False)
    make_device("plug_b", "10.0.1.2", power_state=False)
    return {
        "plug_a": network.add("10.0.1.1", FakePlug("plug_a")),
        "plug_b": network.add("10.0.1.2", FakePlug("plug_b")),
    }


@pytest.fixture
def make_workflow(db_session):
    def _make(steps, enabled=True, name="Evening") -> Workflow:
        workflow = Workflow(name=name, enabled=enabled)
        db_session.add(workflow)
        WorkflowRepository(db_session).replace_steps(workflow, [StepIn(**step) for step in steps])
        db_session.commit()
        return workflow
    return _make


def power_commands(network):
    return [(host, command) for host, command in network.commands if command.startswith("Power")]


async def test_all_steps_complete_in_order(runner, make_workflow, plugs, network, sleep, db_session):
    """Test N successful steps issue N actions in order and complete the run."""
    workflow = make_workflow([
        {"action": "TURN_ON", "device_id": "plug_a"},
        {"action": "TURN_ON", "device_id": "plug_b"},
        {"action": "TURN_OFF", "device_id": "plug_a"},
    ])

    outcome = await runner.execute(workflow.id)

    assert outcome.success
    assert [step.order for step in outcome.steps] == [0, 1, 2]
    assert power_commands(network) == [
        ("10.0.1.1", "Power ON"),
        ("10.0.1.2", "Power ON"),
        ("10.0.1.1", "Power OFF"),
    ]
    assert sleep.calls == [PAUSE, PAUSE, PAUSE]

    execution = db_session.get(WorkflowExecution, outcome.execution_id)
    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.completed_at is not None
    assert execution.error_message is None
    assert len(execution.step_results) == 3


async def test_condition_failure_halts_run(runner, make_workflow, plugs, network, db_session):
    """Test a failed precondition fails the run before any action is sent."""
    workflow = make_workflow([
        {"action": "TURN_OFF", "device_id": "plug_a", "conditions": [{"device_id": "plug_b", "state": "ON"}]},
        {"action": "TURN_ON", "device_id": "plug_a"},
    ])

    outcome = await runner.execute(workflow.id)

    assert not outcome.success
    assert outcome.message == "Condition failed: Device plug_b is OFF, expected ON"
    assert len(outcome.steps) == 1
    assert power_commands(network) == []

    execution = db_session.get(WorkflowExecution, outcome.execution_id)
    assert execution.status == ExecutionStatus.FAILED
    assert execution.completed_at is not None
    assert execution.error_message == outcome.message


async def test_condition_sees_earlier_steps(runner, make_workflow, plugs):
    """Test a condition observes the power state stored by a previous step."""
    workflow = make_workflow([
        {"action": "TURN_ON", "device_id": "plug_a"},
        {"action": "TURN_ON", "device_id": "plug_b", "conditions": [{"device_id": "plug_a", "state": "ON"}]},
    ])

    outcome = await runner.execute(workflow.id)

    assert outcome.success
    assert plugs["plug_b"].power is True


async def test_condition_on_unknown_device_fails(runner, make_workflow, plugs):
    workflow = make_workflow([
        {"action": "TURN_ON", "device_id": "plug_a", "conditions": [{"device_id": "ghost", "state": "OFF"}]},
    ])

    outcome = await runner.execute(workflow.id)

    assert not outcome.success
    assert "ghost" in outcome.message


async def test_action_failure_marks_device_offline(runner, make_workflow, plugs, network, db_session):
    """Test an unreachable device fails its step, goes offline and stops the run."""
    network.unreachable.add("10.0.1.1")
    workflow = make_workflow([
        {"action": "TURN_ON", "device_id": "plug_a"},
        {"action": "TURN_ON", "device_id": "plug_b"},
    ])

    outcome = await runner.execute(workflow.id)

    assert not outcome.success
    assert "timeout" in outcome.message
    assert plugs["plug_b"].power is False
    assert ("10.0.1.2", "Power ON") not in network.commands

    device = db_session.query(Device).filter(Device.device_id == "plug_a").one()
    db_session.refresh(device)
    assert device.status == DeviceStatus.OFFLINE


async def test_action_success_persists_power_state(runner, make_workflow, plugs, db_session):
    workflow = make_workflow([{"action": "TURN_ON", "device_id": "plug_b"}])

    await runner.execute(workflow.id)

    device = db_session.query(Device).filter(Device.device_id == "plug_b").one()
    db_session.refresh(device)
    assert device.power_state is True
    assert device.status == DeviceStatus.ONLINE


async def test_delay_step_sleeps(runner, make_workflow, plugs, sleep):
    workflow = make_workflow([{"action": "DELAY", "delay": 3}])

    outcome = await runner.execute(workflow.id)

    assert outcome.success
    assert outcome.steps[0].action is WorkflowAction.DELAY
    assert sleep.calls == [3, PAUSE]


async def test_zero_delay_is_noop(runner, make_workflow, plugs, sleep):
    workflow = make_workflow([{"action": "DELAY", "delay": 0}])

    outcome = await runner.execute(workflow.id)

    assert outcome.success
    assert sleep.calls == [PAUSE]


async def test_delay_takes_real_time(db_session, service, make_workflow, plugs):
    """Test a 2 second DELAY keeps the run going for at least 2 seconds."""
    workflow = make_workflow([{"action": "DELAY", "delay": 2}])
    runner = WorkflowRunner(db_session, service, step_pause=0)

    loop = asyncio.get_running_loop()
    started = loop.time()
    outcome = await runner.execute(workflow.id)

    assert outcome.success
    assert loop.time() - started >= 2


async def test_unknown_workflow(runner, db_session):
    with pytest.raises(WorkflowNotFoundError):
        await runner.execute("missing")
    assert db_session.query(WorkflowExecution).count() == 0


async def test_disabled_workflow(runner, make_workflow, plugs, db_session):
    workflow = make_workflow([{"action": "TURN_ON", "device_id": "plug_a"}], enabled=False)

    with pytest.raises(WorkflowDisabledError):
        await runner.execute(workflow.id)
    assert db_session.query(WorkflowExecution).count() == 0


async def test_run_steps_stream(runner, make_workflow, plugs, db_session):
    """Test the step stream can be consumed directly and stops at the first failure."""
    workflow = make_workflow([
        {"action": "TURN_ON", "device_id": "plug_a"},
        {"action": "TURN_ON", "device_id": "plug_b", "conditions": [{"device_id": "plug_a", "state": "OFF"}]},
        {"action": "DELAY", "delay": 1},
    ])

    results = [result async for result in runner.run_steps(workflow)]

    assert [result.success for result in results] == [True, False]
