"""Task plans, the in-memory plan table and per-project plan hashes."""

from __future__ import annotations

import dataclasses
import enum
import hashlib
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

log = logging.getLogger(__name__)

TASK_STATUS_START = 1


@dataclass
class TaskInfo:
    """A task definition as distributed to agents."""

    task_id: str
    project_id: int
    name: str = ""
    command: str = ""
    cron: str = ""
    remark: str = ""
    timeout: int = 0
    status: int = 0
    noseize: bool = False
    client_ip: str = ""
    tmp_id: str = ""
    create_time: int = 0
    workflow_id: int | None = None

    def scheduler_key(self) -> str:
        return f"{self.project_id}/{self.task_id}"

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskInfo":
        known = {f.name for f in dataclasses.fields(cls)}
        try:
            return cls(**{k: v for k, v in data.items() if k in known})
        except TypeError as exc:
            raise ValueError(f"invalid task data: {exc}") from exc


class PlanType(enum.Enum):
    NORMAL = "normal"
    ACTIVE = "active"
    WORKFLOW = "workflow"


@dataclass
class TaskSchedulePlan:
    """A task with its next run time; ``next_after`` yields the run after a moment."""

    task: TaskInfo
    next_after: Callable[[datetime], datetime]
    type: PlanType = PlanType.NORMAL
    next_time: datetime = field(default_factory=datetime.now)
    tmp_id: str = ""

    def advance(self, now: datetime) -> None:
        self.next_time = self.next_after(now)


class TaskScheduler:
    """Thread-safe table of plans and of tasks currently executing.

    ``debounce`` is the delay in seconds before plan hashes are recalculated
    after a change; ``None`` recalculates at once.
    """

    def __init__(self, debounce: float | None = 1.0) -> None:
        self._lock = threading.RLock()
        self._plans: dict[str, TaskSchedulePlan] = {}
        self._executing: dict[str, Any] = {}
        self._hash_lock = threading.Lock()
        self._hashes: dict[int, str] = {}
        self._refreshed_at: datetime | None = None
        self._debounce = debounce
        self._timer: threading.Timer | None = None

    def _plans_changed(self) -> None:
        if self._debounce is None:
            self.calc_plan_hash()
            return
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce, self.calc_plan_hash)
            self._timer.daemon = True
            self._timer.start()

    def set_plan(self, key: str, plan: TaskSchedulePlan) -> None:
        with self._lock:
            self._plans[key] = plan
        self._plans_changed()

    def get_plan(self, key: str) -> TaskSchedulePlan | None:
        with self._lock:
            return self._plans.get(key)

    def remove_plan(self, key: str) -> None:
        with self._lock:
            self._plans.pop(key, None)
        self._plans_changed()

    def remove_all(self) -> None:
        with self._lock:
            self._plans.clear()

    def plan_count(self) -> int:
        with self._lock:
            return len(self._plans)

    def plans(self) -> dict[str, TaskSchedulePlan]:
        with self._lock:
            return dict(self._plans)

    def calc_plan_hash(self, now: datetime | None = None) -> None:
        """Recompute the MD5 digest of each project's sorted plan keys and commands."""
        per_project: dict[int, list[tuple[str, str]]] = defaultdict(list)
        for key, plan in self.plans().items():
            per_project[plan.task.project_id].append((key, plan.task.command))

        with self._hash_lock:
            for project_id in list(self._hashes):
                if project_id not in per_project:
                    del self._hashes[project_id]
            for project_id, entries in per_project.items():
                text = "".join(f"{key};{command};" for key, command in sorted(entries))
                self._hashes[project_id] = hashlib.md5(text.encode()).hexdigest()
            self._refreshed_at = now or datetime.now()

    def project_task_hash(self, project_id: int) -> tuple[str, int]:
        """Return the project's plan hash and the Unix time of the last refresh."""
        with self._hash_lock:
            refreshed = int(self._refreshed_at.timestamp()) if self._refreshed_at else 0
            return self._hashes.get(project_id, ""), refreshed

    def set_executing(self, key: str, info: Any) -> None:
        with self._lock:
            self._executing[key] = info

    def get_executing(self, key: str) -> Any | None:
        with self._lock:
            return self._executing.get(key)

    def delete_executing(self, key: str) -> None:
        with self._lock:
            self._executing.pop(key, None)

    def executing_count(self) -> int:
        with self._lock:
            return len(self._executing)

    def try_schedule(
        self,
        now: datetime | None,
        start: Callable[[TaskSchedulePlan], Any],
    ) -> timedelta:
        """Start every due plan and return the delay until the next one is due."""
        plans = self.plans()
        if not plans:
            return timedelta(seconds=1)
        now = now or datetime.now()
        nearest: datetime | None = None
        for plan in plans.values():
            if plan.next_time <= now:
                try:
                    start(plan)
                except Exception:
                    log.exception("failed to start task %s", plan.task.scheduler_key())
                plan.advance(now)
            if nearest is None or plan.next_time < nearest:
                nearest = plan.next_time
        return nearest - now