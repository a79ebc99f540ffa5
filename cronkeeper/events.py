"""Events sent from the center to agents and their translation to task events."""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass

from cronkeeper.scheduler import TaskInfo

log = logging.getLogger(__name__)


class RemoteEventType(str, enum.Enum):
    PUT = "put"
    DELETE = "delete"
    TMP_SCHEDULE = "tmp_schedule"
    TASK_STOP = "task_stop"
    WORKFLOW_SCHEDULE = "workflow_schedule"


class TaskEventType(enum.Enum):
    SAVE = "save"
    DELETE = "delete"
    KILL = "kill"
    TEMPORARY = "temporary"
    WORKFLOW_SCHEDULE = "workflow_schedule"


@dataclass
class RemoteEvent:
    type: str
    value: bytes
    version: str = "v1"
    event_time: int = 0


@dataclass
class TaskEvent:
    event_type: TaskEventType
    task: TaskInfo


_REMOTE_TO_TASK = {
    RemoteEventType.PUT: TaskEventType.SAVE,
    RemoteEventType.TMP_SCHEDULE: TaskEventType.TEMPORARY,
    RemoteEventType.DELETE: TaskEventType.DELETE,
    RemoteEventType.TASK_STOP: TaskEventType.KILL,
}


def parse_task(raw: bytes | str) -> TaskInfo:
    """Decode a JSON task document; raises ValueError when it is not one."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValueError(f"invalid task json: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("task json must be an object")
    return TaskInfo.from_dict(data)


def task_event_from_remote(event: RemoteEvent) -> TaskEvent | None:
    """Map a center event to a task event; None for unknown or unreadable events."""
    log.debug("handle new event from center: %s", event.type)
    try:
        event_type = _REMOTE_TO_TASK[RemoteEventType(event.type)]
    except (ValueError, KeyError):
        return None
    try:
        task = parse_task(event.value)
    except ValueError:
        if event_type is TaskEventType.SAVE:
            log.error("failed to unmarshal task: %r", event.value)
        return None
    return TaskEvent(event_type, task)