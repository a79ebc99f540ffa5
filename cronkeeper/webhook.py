"""Webhook callbacks made when a task run ends, and the task status keys that trigger them."""

from __future__ import annotations

import dataclasses
import hashlib
import hmac
import json
import logging
import secrets
import string
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from cronkeeper.taskreport import TaskLog

log = logging.getLogger(__name__)

TASK_STATUS_PREFIX = "/cronkeeper/task_status/"
SECRET_LENGTH = 32
DEFAULT_RETRY_DELAYS = (1, 3, 5, 7, 9)

_SECRET_ALPHABET = string.ascii_letters + string.digits

Post = Callable[[str, bytes, float], int]


class WebHookError(Exception):
    """Raised when a webhook callback cannot be delivered."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def task_status_key(project_id: int, task_id: str) -> str:
    """Key under which the running status of a task is stored."""
    return f"{TASK_STATUS_PREFIX}{project_id}/{task_id}"


def parse_status_key(key: str) -> tuple[int, str] | None:
    """Return (project id, task id) of a status key, or None for other keys.

    Raises ValueError when the project id part is not an integer.
    """
    if not key.startswith(TASK_STATUS_PREFIX):
        return None
    project, sep, task_id = key[len(TASK_STATUS_PREFIX):].partition("/")
    if not sep or not project or not task_id:
        return None
    try:
        return int(project), task_id
    except ValueError as exc:
        raise ValueError(f"failed to parse project id, not int: {project!r}") from exc


@dataclass
class WebHook:
    """A callback registered for a project."""

    project_id: int
    type: str
    callback_url: str
    secret: str
    create_time: int = 0

    @classmethod
    def create(cls, project_id: int, type: str, callback_url: str, now: int | None = None) -> "WebHook":
        """Register a new callback with a freshly generated secret."""
        secret = "".join(secrets.choice(_SECRET_ALPHABET) for _ in range(SECRET_LENGTH))
        created = int(time.time()) if now is None else now
        return cls(project_id, type, callback_url, secret, created)


@dataclass
class WebHookBody:
    """The JSON document posted to a webhook callback."""

    task_id: str
    project_id: int
    command: str = ""
    start_time: int = 0
    end_time: int = 0
    client_ip: str = ""
    result: str = ""
    error: str = ""
    system_error: str = ""
    request_time: int = 0
    sign: str = ""

    @classmethod
    def from_task_log(cls, entry: TaskLog) -> "WebHookBody":
        """Build the callback body from the stored log of a finished run."""
        try:
            detail = json.loads(entry.result)
        except (json.JSONDecodeError, TypeError):
            detail = {}
        if not isinstance(detail, dict):
            detail = {}
        return cls(
            task_id=entry.task_id,
            project_id=entry.project_id,
            command=entry.command,
            start_time=entry.start_time,
            end_time=entry.end_time,
            client_ip=entry.client_ip,
            result=str(detail.get("result") or ""),
            error=str(detail.get("error") or ""),
            system_error=str(detail.get("system_error") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def _make_sign(body: WebHookBody, secret: str) -> str:
    fields = {k: v for k, v in body.to_dict().items() if k != "sign"}
    message = "&".join(f"{key}={fields[key]}" for key in sorted(fields))
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def _urllib_post(url: str, data: bytes, timeout: float) -> int:
    request = urllib.request.Request(
        url, data=data, headers={"Content-Type": "application/json"}, method="POST"
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return response.status
    except urllib.error.HTTPError as exc:
        return exc.code


class WebHookSender:
    """Posts signed bodies to callbacks, retrying with growing delays."""

    def __init__(
        self,
        post: Post | None = None,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self._post = post or _urllib_post
        self._delays = tuple(retry_delays)
        self._timeout = timeout
        self._clock = clock
        self._sleep = sleep

    def send(self, hook: WebHook, body: WebHookBody) -> WebHookBody:
        """Deliver ``body`` to ``hook`` and return the body as last sent.

        Raises WebHookError when every attempt failed.
        """
        attempts = max(len(self._delays), 1)
        last_error: WebHookError | None = None
        for attempt in range(attempts):
            signed = dataclasses.replace(body, request_time=int(self._clock()))
            signed.sign = _make_sign(signed, hook.secret)
            payload = json.dumps(signed.to_dict(), ensure_ascii=False).encode()
            try:
                status = self._post(hook.callback_url, payload, self._timeout)
            except OSError as exc:
                last_error = WebHookError(str(exc))
            else:
                if status == 200:
                    return signed
                last_error = WebHookError("callback response failed", status)
            log.error("webhook %s attempt %d failed: %s", hook.callback_url, attempt + 1, last_error)
            if attempt < attempts - 1:
                self._sleep(self._delays[attempt])
        assert last_error is not None
        raise last_error