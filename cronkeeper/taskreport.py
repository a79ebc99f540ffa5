"""Turn execution results into task log records and hand them to storage."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable

from cronkeeper.executor import ExecuteResult
from cronkeeper.scheduler import TaskInfo

log = logging.getLogger(__name__)


@dataclass
class TaskLog:
    """A stored record of one task run."""

    name: str
    result: str
    start_time: int
    end_time: int
    command: str
    with_error: int
    client_ip: str
    tmp_id: str
    project: str
    project_id: int
    task_id: str


class ReportError(Exception):
    """Raised when a task result cannot be reported."""


class TaskResultReporter:
    """Reports results through ``project_title`` (id to title or None) and ``save_log``."""

    def __init__(
        self,
        project_title: Callable[[int], str | None],
        save_log: Callable[[TaskLog], None],
    ) -> None:
        self._project_title = project_title
        self._save_log = save_log

    def report(self, task: TaskInfo, result: ExecuteResult | None, tmp_id: str) -> TaskLog:
        if result is None:
            raise ReportError("failed to report task result, empty result")

        try:
            title = self._project_title(task.project_id)
        except Exception as exc:
            raise ReportError(
                f"failed to report task result, the task project not found, {exc}"
            ) from exc
        if title is None:
            log.error("task result report error, project not exist! project_id=%s", task.project_id)
            raise ReportError("task result report error, project not exist!")

        result_doc = {"result": result.output, "error": "", "system_error": result.error}
        entry = TaskLog(
            name=task.name,
            result=json.dumps(result_doc, ensure_ascii=False),
            start_time=int(result.start_time.timestamp()),
            end_time=int(result.end_time.timestamp()),
            command=task.command,
            with_error=1 if result.error else 0,
            client_ip=task.client_ip,
            tmp_id=tmp_id,
            project=title,
            project_id=task.project_id,
            task_id=task.task_id,
        )

        try:
            self._save_log(entry)
        except Exception as exc:
            log.error("failed to store task log for %s: %s", entry.name, exc)
            raise ReportError(f"failed to save task result, {exc}") from exc
        return entry