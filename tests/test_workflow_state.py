import json

import pytest

from cronkeeper.workflow_state import (
    PlanState,
    ScheduleRecord,
    StateError,
    TaskFinished,
    TaskStatus,
    WorkflowTaskStates,
    parse_plan_state,
    parse_task_states,
    workflow_plan_key,
    workflow_task_status_key,
    workflow_task_status_prefix,
)


def _states():
    return WorkflowTaskStates(
        project_id=1,
        task_id="t1",
        workflow_id=7,
        current_status=TaskStatus.STARTING,
        schedule_count=1,
        command="echo hi",
        start_time=100,
        schedule_records=[
            ScheduleRecord(tmp_id="x", status=TaskStatus.STARTING, event_time=100),
            ScheduleRecord(tmp_id="y", status=TaskStatus.RUNNING, event_time=101, agent_ip="10.0.0.1"),
        ],
    )


def test_latest_record_is_last():
    states = _states()
    assert states.latest_record().tmp_id == "y"


def test_latest_record_empty():
    states = WorkflowTaskStates(project_id=1, task_id="t", workflow_id=2)
    assert states.latest_record() is None


def test_task_states_round_trip():
    states = _states()
    assert parse_task_states(states.to_json()) == states


def test_task_states_json_keys():
    data = json.loads(_states().to_json())
    assert data["current_status"] == "starting"
    assert data["schedule_records"][1]["agent_ip"] == "10.0.0.1"
    assert set(data) == {
        "project_id", "task_id", "workflow_id", "current_status", "schedule_count",
        "command", "start_time", "end_time", "schedule_records",
    }


def test_parse_empty_returns_none():
    assert parse_task_states("") is None
    assert parse_plan_state(b"") is None


def test_parse_invalid_raises():
    with pytest.raises(StateError):
        parse_task_states("{not json")
    with pytest.raises(StateError):
        parse_plan_state("[1, 2]")


def test_parse_null_records():
    states = parse_task_states('{"project_id": 1, "task_id": "t", "workflow_id": 2, "schedule_records": null}')
    assert states.schedule_records == []


def test_plan_state_omits_empty_records():
    state = PlanState(workflow_id=3, start_time=10, status=TaskStatus.RUNNING, latest_try_time=10)
    data = json.loads(state.to_json())
    assert "records" not in data
    assert data["status"] == "running"
    assert parse_plan_state(state.to_json()) == state


def test_plan_state_with_records_round_trip():
    state = PlanState(workflow_id=7, status="done", records=[_states()])
    assert parse_plan_state(state.to_json()) == state


def test_task_finished_from_json():
    raw = json.dumps({"task_id": "t1", "project_id": 4, "status": "fail",
                      "tmp_id": "x", "workflow_id": 7, "result": "boom"})
    finished = TaskFinished.from_json(raw)
    assert finished == TaskFinished("t1", 4, TaskStatus.FAIL, "x", 7, "boom")


def test_task_finished_invalid():
    with pytest.raises(StateError):
        TaskFinished.from_json("nope")


def test_status_key_under_prefix():
    key = workflow_task_status_key(7, 1, "t1")
    assert key.startswith(workflow_task_status_prefix(7))
    assert not key.startswith(workflow_task_status_prefix(70))


def test_plan_key_not_under_status_prefix():
    assert not workflow_plan_key(7).startswith(workflow_task_status_prefix(7))
    assert workflow_plan_key(7) != workflow_plan_key(8)