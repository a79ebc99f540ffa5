"""Persisted state of workflow runs and of their tasks."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any

WORKFLOW_KEY_PREFIX = "/cronkeeper/workflow"


class TaskStatus(str, enum.Enum):
    NOT_RUNNING = "not_running"
    STARTING = "starting"
    RUNNING = "running"
    DONE = "done"
    FAIL = "fail"


class StateError(Exception):
    """Raised when stored workflow state cannot be read."""


def _status_text(value: Any) -> str:
    return value.value if isinstance(value, TaskStatus) else str(value)


def _dumps(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def _loads_object(raw: bytes | str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise StateError(f"invalid state json: {exc}") from exc
    if not isinstance(data, dict):
        raise StateError("state json must be an object")
    return data


@dataclass
class ScheduleRecord:
    """One scheduling step of a workflow task."""

    tmp_id: str = ""
    result: str = ""
    status: str = ""
    event_time: int = 0
    agent_ip: str = ""

    def __post_init__(self) -> None:
        self.status = _status_text(self.status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tmp_id": self.tmp_id,
            "result": self.result,
            "status": self.status,
            "event_time": self.event_time,
            "agent_ip": self.agent_ip,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduleRecord":
        return cls(
            tmp_id=str(data.get("tmp_id") or ""),
            result=str(data.get("result") or ""),
            status=str(data.get("status") or ""),
            event_time=int(data.get("event_time") or 0),
            agent_ip=str(data.get("agent_ip") or ""),
        )


@dataclass
class WorkflowTaskStates:
    """The running state of one task within a workflow run."""

    project_id: int
    task_id: str
    workflow_id: int
    current_status: str = TaskStatus.NOT_RUNNING.value
    schedule_count: int = 0
    command: str = ""
    start_time: int = 0
    end_time: int = 0
    schedule_records: list[ScheduleRecord] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.current_status = _status_text(self.current_status)

    def latest_record(self) -> ScheduleRecord | None:
        return self.schedule_records[-1] if self.schedule_records else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "task_id": self.task_id,
            "workflow_id": self.workflow_id,
            "current_status": self.current_status,
            "schedule_count": self.schedule_count,
            "command": self.command,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "schedule_records": [r.to_dict() for r in self.schedule_records],
        }

    def to_json(self) -> str:
        return _dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowTaskStates":
        try:
            records = [ScheduleRecord.from_dict(r) for r in data.get("schedule_records") or []]
            return cls(
                project_id=int(data.get("project_id") or 0),
                task_id=str(data.get("task_id") or ""),
                workflow_id=int(data.get("workflow_id") or 0),
                current_status=str(data.get("current_status") or ""),
                schedule_count=int(data.get("schedule_count") or 0),
                command=str(data.get("command") or ""),
                start_time=int(data.get("start_time") or 0),
                end_time=int(data.get("end_time") or 0),
                schedule_records=records,
            )
        except (TypeError, ValueError, AttributeError) as exc:
            raise StateError(f"invalid workflow task states: {exc}") from exc


@dataclass
class PlanState:
    """The state of one workflow run."""

    workflow_id: int
    start_time: int = 0
    end_time: int = 0
    status: str = ""
    reason: str = ""
    latest_try_time: int = 0
    records: list[WorkflowTaskStates] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.status = _status_text(self.status)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "workflow_id": self.workflow_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "status": self.status,
            "reason": self.reason,
            "latest_try_time": self.latest_try_time,
        }
        if self.records:
            data["records"] = [r.to_dict() for r in self.records]
        return data

    def to_json(self) -> str:
        return _dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlanState":
        try:
            records = [WorkflowTaskStates.from_dict(r) for r in data.get("records") or []]
            return cls(
                workflow_id=int(data.get("workflow_id") or 0),
                start_time=int(data.get("start_time") or 0),
                end_time=int(data.get("end_time") or 0),
                status=str(data.get("status") or ""),
                reason=str(data.get("reason") or ""),
                latest_try_time=int(data.get("latest_try_time") or 0),
                records=records,
            )
        except (TypeError, ValueError, AttributeError) as exc:
            raise StateError(f"invalid plan state: {exc}") from exc


@dataclass
class TaskFinished:
    """An agent's report that a task run has ended."""

    task_id: str
    project_id: int
    status: str
    tmp_id: str = ""
    workflow_id: int = 0
    result: str = ""

    def __post_init__(self) -> None:
        self.status = _status_text(self.status)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskFinished":
        try:
            return cls(
                task_id=str(data.get("task_id") or ""),
                project_id=int(data.get("project_id") or 0),
                status=str(data.get("status") or ""),
                tmp_id=str(data.get("tmp_id") or ""),
                workflow_id=int(data.get("workflow_id") or 0),
                result=str(data.get("result") or ""),
            )
        except (TypeError, ValueError) as exc:
            raise StateError(f"invalid finished report: {exc}") from exc

    @classmethod
    def from_json(cls, raw: bytes | str) -> "TaskFinished":
        return cls.from_dict(_loads_object(raw))


def parse_task_states(raw: bytes | str | None) -> WorkflowTaskStates | None:
    """Decode stored task states; None when nothing is stored."""
    if not raw:
        return None
    return WorkflowTaskStates.from_dict(_loads_object(raw))


def parse_plan_state(raw: bytes | str | None) -> PlanState | None:
    """Decode a stored plan state; None when nothing is stored."""
    if not raw:
        return None
    return PlanState.from_dict(_loads_object(raw))


def workflow_task_status_prefix(workflow_id: int) -> str:
    return f"{WORKFLOW_KEY_PREFIX}/{workflow_id}/task_status/"


def workflow_task_status_key(workflow_id: int, project_id: int, task_id: str) -> str:
    return f"{workflow_task_status_prefix(workflow_id)}{project_id}/{task_id}"


def workflow_plan_key(workflow_id: int) -> str:
    return f"{WORKFLOW_KEY_PREFIX}/{workflow_id}/plan"