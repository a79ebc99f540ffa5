"""Read and update the stored state of workflow runs and their tasks.

The store is any mutable mapping from keys to JSON text, such as a plain
dict or a wrapper around a transactional key-value store.
"""

from __future__ import annotations

import time
from collections.abc import MutableMapping
from typing import Any

from cronkeeper.scheduler import TaskInfo
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

KV = MutableMapping[str, Any]


def _now() -> int:
    return int(time.time())


def set_task_finished(kv: KV, agent_ip: str, result: TaskFinished, limit: int) -> bool:
    """Record the end of a task run; return True when the workflow run has failed for good.

    A failed run is retried until the task has been scheduled ``limit`` times.
    A finished run does not necessarily mean a successful one.
    """
    key = workflow_task_status_key(result.workflow_id, result.project_id, result.task_id)
    states = parse_task_states(kv.get(key))
    if states is None:
        return False
    if states.current_status in (TaskStatus.DONE.value, TaskStatus.FAIL.value):
        return False

    end_time = _now()
    states.schedule_records.append(ScheduleRecord(
        tmp_id=result.tmp_id,
        status=result.status,
        result=result.result,
        event_time=end_time,
        agent_ip=agent_ip,
    ))

    plan_finished = False
    if result.status == TaskStatus.FAIL.value:
        if states.schedule_count >= limit:
            states.current_status = TaskStatus.FAIL.value
            states.end_time = end_time
            plan_finished = True
        else:
            states.current_status = TaskStatus.NOT_RUNNING.value
    elif result.status == TaskStatus.DONE.value:
        states.current_status = TaskStatus.DONE.value
        states.end_time = end_time

    kv[key] = states.to_json()
    return plan_finished


def set_task_not_running(
    kv: KV,
    workflow_id: int,
    project_id: int,
    task_id: str,
    tmp_id: str,
    reason: str,
) -> WorkflowTaskStates | None:
    """Mark a task as not running with a reason; unreadable or missing state is left alone."""
    key = workflow_task_status_key(workflow_id, project_id, task_id)
    try:
        states = parse_task_states(kv.get(key))
    except StateError:
        return None
    if states is None:
        return None

    states.current_status = TaskStatus.NOT_RUNNING.value
    states.schedule_records.append(ScheduleRecord(
        tmp_id=tmp_id,
        status=TaskStatus.NOT_RUNNING.value,
        result=reason,
        event_time=_now(),
    ))
    kv[key] = states.to_json()
    return states


def set_task_running(
    kv: KV,
    workflow_id: int,
    project_id: int,
    task_id: str,
    tmp_id: str,
    agent_ip: str,
) -> WorkflowTaskStates:
    """Mark a started task as running on ``agent_ip``."""
    key = workflow_task_status_key(workflow_id, project_id, task_id)
    states = parse_task_states(kv.get(key))
    if states is None:
        raise StateError("unknown")

    states.current_status = TaskStatus.RUNNING.value
    states.schedule_records.append(ScheduleRecord(
        tmp_id=tmp_id,
        agent_ip=agent_ip,
        status=TaskStatus.RUNNING.value,
        event_time=_now(),
    ))
    kv[key] = states.to_json()
    return states


def set_task_starting(kv: KV, workflow_id: int, task: TaskInfo) -> WorkflowTaskStates:
    """Mark a task as starting, creating its state on the first schedule."""
    key = workflow_task_status_key(workflow_id, task.project_id, task.task_id)
    now = _now()
    record = ScheduleRecord(tmp_id=task.tmp_id, status=TaskStatus.STARTING.value, event_time=now)

    states = parse_task_states(kv.get(key))
    if states is None:
        states = WorkflowTaskStates(
            project_id=task.project_id,
            task_id=task.task_id,
            workflow_id=workflow_id,
            current_status=TaskStatus.STARTING.value,
            command=task.command,
            schedule_count=1,
            start_time=now,
            schedule_records=[record],
        )
    else:
        states.current_status = TaskStatus.STARTING.value
        states.schedule_count += 1
        states.schedule_records.append(record)

    kv[key] = states.to_json()
    return states


def get_task_states(kv: KV, key: str) -> WorkflowTaskStates | None:
    """Return the stored task states, or None when absent or unreadable."""
    try:
        return parse_task_states(kv.get(key))
    except StateError:
        return None


def get_all_task_states(kv: KV, workflow_id: int) -> list[WorkflowTaskStates]:
    """Return the states of every task of a workflow run, ordered by key.

    Entries that cannot be read are returned as empty states.
    """
    prefix = workflow_task_status_prefix(workflow_id)
    found = []
    for key in sorted(k for k in kv if k.startswith(prefix)):
        try:
            states = parse_task_states(kv[key])
        except StateError:
            states = None
        if states is None:
            states = WorkflowTaskStates(project_id=0, task_id="", workflow_id=0, current_status="")
        found.append(states)
    return found


def get_plan_state(kv: KV, workflow_id: int) -> PlanState | None:
    """Return the state of a workflow run, or None when it has none."""
    return parse_plan_state(kv.get(workflow_plan_key(workflow_id)))


def set_plan_running(kv: KV, workflow_id: int) -> PlanState:
    """Mark a workflow run as running, creating its state on the first try."""
    key = workflow_plan_key(workflow_id)
    now = _now()
    state = parse_plan_state(kv.get(key))
    if state is None:
        state = PlanState(
            workflow_id=workflow_id,
            start_time=now,
            status=TaskStatus.RUNNING.value,
            latest_try_time=now,
        )
    else:
        state.latest_try_time = now
        state.status = TaskStatus.RUNNING.value
    kv[key] = state.to_json()
    return state


def clear_workflow_keys(kv: KV, workflow_id: int) -> int:
    """Delete every key of a workflow run; return how many were removed."""
    prefixes = (workflow_plan_key(workflow_id), workflow_task_status_prefix(workflow_id))
    doomed = [key for key in kv if key.startswith(prefixes)]
    for key in doomed:
        del kv[key]
    return len(doomed)