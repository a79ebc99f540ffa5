# cronkeeper

Building blocks for a distributed cron system. It runs task commands through
a shell, keeps a table of schedule plans and works out when each is due,
tracks the state of workflow runs in a key/value mapping, keeps a registry of
live agent streams, handles one-off temporary tasks and delivers signed
webhook callbacks. It has no dependencies outside the standard library.

## Install

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `cronkeeper.executor` — `execute_command(shell, command, timeout, cancel_event)`
  runs `shell -c command`, collects its standard output line by line and
  returns an `ExecuteResult` (`output`, `error`, `start_time`, `end_time`).
  `error` is empty on success, `"timeout"` when `timeout` seconds pass,
  `"canceled"` when the `threading.Event` is set; otherwise the exit code is
  described by `describe_exit_code` (for example 127 gives
  `"command not found"`). A timed-out or cancelled command is killed.
- `cronkeeper.scheduler` — `TaskInfo` (with `scheduler_key()` and `to_dict()`),
  `PlanType`, `TaskSchedulePlan` and `TaskScheduler`. The scheduler is a
  thread-safe table of plans and of executing tasks. After plans change it
  recomputes, per project, an MD5 hash of the sorted plan keys and commands
  (delayed by `debounce` seconds, or at once with `debounce=None`);
  `project_task_hash` returns that hash with the time of the last refresh.
  `try_schedule(now, start)` calls `start` for every due plan, advances it,
  and returns the delay until the next plan is due (one second when there are
  no plans).
- `cronkeeper.events` — `parse_task` decodes a JSON task, and
  `task_event_from_remote` maps a `RemoteEvent` (put, delete, tmp_schedule,
  task_stop) to a `TaskEvent`, or `None` for unknown or unreadable events.
- `cronkeeper.taskreport` — `TaskResultReporter(project_title, save_log)`
  builds a `TaskLog` from an `ExecuteResult` and passes it to `save_log`;
  failures raise `ReportError`.
- `cronkeeper.registry` — `StreamManager` stores `Stream` objects by project
  and service name from a `NodeMeta`, and looks them up by `host:port`.
  `find_stale_agents` takes `AgentTaskHash` reports and returns the addresses
  of agents whose hash is older than a differing, newer one.
- `cronkeeper.workflow_state` — `TaskStatus`, `ScheduleRecord`,
  `WorkflowTaskStates`, `PlanState`, `TaskFinished`, their JSON form, the key
  layout (`workflow_task_status_key`, `workflow_task_status_prefix`,
  `workflow_plan_key`) and `StateError` for unreadable state.
- `cronkeeper.workflow_ops` — transitions over any mutable mapping of keys to
  JSON text: `set_task_starting`, `set_task_running`, `set_task_not_running`,
  `set_task_finished` (retries a failed task until it has been scheduled
  `limit` times, then returns `True`), `set_plan_running`, the getters and
  `clear_workflow_keys`.
- `cronkeeper.temporary` — `TemporaryTask` runs: `schedule_window`,
  `validate_schedule_time` (raises `ScheduleTimePassed`), `is_due`,
  `apply_overrides` and `annotate_tasks`, which adds creator names and
  running state as `TemporaryTaskView` items.
- `cronkeeper.webhook` — `task_status_key` / `parse_status_key`, `WebHook`
  (`WebHook.create` makes a 32-character secret), `WebHookBody.from_task_log`
  and `WebHookSender`, which signs each body with HMAC-SHA256 and posts it,
  retrying after 1, 3, 5, 7 and 9 seconds by default and raising
  `WebHookError` when every attempt fails. The poster is replaceable; the
  default uses `urllib`.

## Examples

```python
from cronkeeper.executor import execute_command

result = execute_command("/bin/sh", "echo hello", 5, None)
print(repr(result.output), repr(result.error))  # 'hello\n\n' ''
```

```python
from cronkeeper.scheduler import TaskInfo
from cronkeeper.workflow_ops import set_task_finished, set_task_running, set_task_starting
from cronkeeper.workflow_state import TaskFinished

kv = {}
task = TaskInfo(task_id="backup", project_id=1, command="echo hi", tmp_id="run-1")
set_task_starting(kv, 7, task)
set_task_running(kv, 7, 1, "backup", "run-1", "10.0.0.5")
finished = TaskFinished("backup", 1, "done", tmp_id="run-1", workflow_id=7)
print(set_task_finished(kv, "10.0.0.5", finished, limit=3))  # False
```

## What this package does not do

It is a library of parts, not a running service. There is no agent process
or event loop that ties the scheduler and executor together, no command-line
program, no network server or client for talking between a central service
and agents, no publishing of notifications to web clients, and no database or
key/value store backend: storage is passed in as callables or a mapping.
Parsing cron expressions is also left to the caller, through
`TaskSchedulePlan.next_after`.