"""One-off task runs scheduled for a set time, and their listing."""

from __future__ import annotations

import dataclasses
import json
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping
import uuid

from cronkeeper.scheduler import TaskInfo
from cronkeeper.workflow_state import TaskStatus

SCHEDULE_WAITING = 1
SCHEDULE_SCHEDULED = 2

RUNNING_UNDEFINED = 0
RUNNING = 1
NOT_RUNNING = 2

_MINUTE = 60


class ScheduleTimePassed(ValueError):
    """Raised when a temporary task is created for a time already gone."""


@dataclass
class TemporaryTask:
    """A request to run a task once at ``schedule_time`` (Unix seconds)."""

    project_id: int
    task_id: str
    schedule_time: int
    id: int = 0
    user_id: int = 0
    command: str = ""
    remark: str = ""
    timeout: int = 0
    noseize: bool = False
    schedule_status: int = SCHEDULE_WAITING
    tmp_id: str = ""
    create_time: int = 0


@dataclass
class TemporaryTaskView:
    """A temporary task with its creator's name and running state."""

    task: TemporaryTask
    user_name: str = "-"
    is_running: int = RUNNING_UNDEFINED


@dataclass
class RunningInfo:
    """The stored running status of a task."""

    status: str
    tmp_id: str = ""
    timestamp: int = 0
    agent_ip: str = ""

    @classmethod
    def from_json(cls, raw: bytes | str) -> "RunningInfo":
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValueError(f"invalid running info: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("running info must be an object")
        try:
            return cls(
                status=str(data.get("status") or ""),
                tmp_id=str(data.get("tmp_id") or ""),
                timestamp=int(data.get("timestamp") or 0),
                agent_ip=str(data.get("agent_ip") or ""),
            )
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid running info: {exc}") from exc


def _unix(moment: datetime | None) -> int:
    return math.floor((moment or datetime.now()).timestamp())


def schedule_window(moment: datetime | None) -> tuple[int, int]:
    """Return the (exclusive lower, inclusive upper) bounds of schedule times due at ``moment``.

    The moment is truncated to its minute; the window spans one minute either side.
    """
    seconds = _unix(moment)
    truncated = seconds - seconds % _MINUTE
    return truncated - _MINUTE, truncated + _MINUTE


def validate_schedule_time(task: TemporaryTask, now: datetime | None = None) -> TemporaryTask:
    """Check a new temporary task and return it stamped with creation time and run id."""
    current = _unix(now)
    if task.schedule_time < current:
        raise ScheduleTimePassed("the schedule time has already passed, please set it again")
    return dataclasses.replace(task, create_time=current, tmp_id=uuid.uuid4().hex)


def is_due(task: TemporaryTask, moment: datetime | None = None) -> bool:
    """Tell whether a waiting temporary task falls into the window of ``moment``."""
    low, high = schedule_window(moment)
    return task.schedule_status == SCHEDULE_WAITING and low < task.schedule_time <= high


def apply_overrides(task: TaskInfo, tmp: TemporaryTask) -> TaskInfo:
    """Return the task as the temporary run should execute it."""
    return dataclasses.replace(
        task,
        command=tmp.command or task.command,
        tmp_id=tmp.tmp_id,
        timeout=tmp.timeout,
        noseize=tmp.noseize,
        name=tmp.remark,
    )


def _running_state(task: TemporaryTask, raw: Any) -> int:
    if raw is None:
        return RUNNING_UNDEFINED
    try:
        info = RunningInfo.from_json(raw)
    except ValueError:
        return RUNNING_UNDEFINED
    if info.tmp_id != task.tmp_id:
        return RUNNING_UNDEFINED
    return RUNNING if info.status == TaskStatus.RUNNING.value else NOT_RUNNING


def annotate_tasks(
    tasks: Iterable[TemporaryTask],
    users: Mapping[int, str],
    statuses: Mapping[tuple[int, str], bytes | str],
) -> list[TemporaryTaskView]:
    """Attach creator names and running states to temporary tasks, keeping their order.

    ``users`` maps user ids to names; ``statuses`` maps (project id, task id) to
    the stored running info of that task.
    """
    return [
        TemporaryTaskView(
            task=task,
            user_name=users.get(task.user_id, "-"),
            is_running=_running_state(task, statuses.get((task.project_id, task.task_id))),
        )
        for task in tasks
    ]