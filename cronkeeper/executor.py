"""Run a task command through a shell and collect its output."""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import IO

_POLL_INTERVAL = 0.05
_READER_GRACE = 1.0

_EXIT_MESSAGES = {
    2: "terminal interrupt",
    9: "process terminated",
    126: "unexecutable command",
    127: "command not found",
    128: "invalid exit parameter",
    130: "sig exit",
    255: "error exit code",
}


@dataclass
class ExecuteResult:
    """Outcome of one command run; ``error`` is empty on success."""

    output: str
    error: str
    start_time: datetime
    end_time: datetime


def describe_exit_code(code: int, detail: str) -> str:
    """Turn a process exit code and its error text into a readable message."""
    message = detail if code == 1 else _EXIT_MESSAGES.get(code, f"exit code: {code}")
    if detail:
        message += ", " + detail
    return message


def _collect(stream: IO[str], lines: list[str]) -> None:
    for line in stream:
        if line:
            lines.append(line + "\n")


def _kill(proc: subprocess.Popen) -> None:
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            return
        except PermissionError:
            pass
    proc.kill()


def _failure_message(returncode: int) -> str:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return describe_exit_code(-1, f"signal: {name}")
    return describe_exit_code(returncode, f"exit status {returncode}")


def execute_command(
    shell: str,
    command: str,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
) -> ExecuteResult:
    """Run ``shell -c command`` until it ends, times out or is cancelled."""
    start = datetime.now()
    if cancel_event is not None and cancel_event.is_set():
        return ExecuteResult("", "canceled", start, datetime.now())

    try:
        proc = subprocess.Popen(
            [shell, "-c", command],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=os.name == "posix",
        )
    except OSError as exc:
        return ExecuteResult("", str(exc), start, datetime.now())

    lines: list[str] = []
    reader = threading.Thread(target=_collect, args=(proc.stdout, lines), daemon=True)
    reader.start()

    deadline = None if timeout is None else time.monotonic() + timeout
    stop_reason = ""
    while True:
        try:
            proc.wait(timeout=_POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            pass
        if cancel_event is not None and cancel_event.is_set():
            stop_reason = "canceled"
        elif deadline is not None and time.monotonic() >= deadline:
            stop_reason = "timeout"
        if stop_reason:
            _kill(proc)
            proc.wait()
            break

    reader.join(timeout=_READER_GRACE)
    if not reader.is_alive() and proc.stdout is not None:
        proc.stdout.close()

    if stop_reason:
        error = stop_reason
    elif proc.returncode != 0:
        error = _failure_message(proc.returncode)
    else:
        error = ""

    return ExecuteResult("".join(list(lines)), error, start, datetime.now())