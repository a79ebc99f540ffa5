"""Live agent streams kept by the center, and agent plan-hash comparison."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

_NANOS_PER_SECOND = 10**9


@dataclass(frozen=True)
class NodeMeta:
    """Registration data of one service node."""

    region: str
    system: int
    service_name: str
    host: str
    port: int
    register_time: int = 0

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


def _from_unix_nanos(nanos: int) -> datetime:
    seconds, rest = divmod(nanos, _NANOS_PER_SECOND)
    return datetime.fromtimestamp(seconds) + timedelta(microseconds=rest // 1000)


@dataclass
class Stream:
    """An open event stream to one agent."""

    sender: Callable[[Any], Any]
    cancel_func: Callable[[], Any] | None
    create_time: datetime
    host: str
    port: int
    service_name: str
    region: str
    system: int

    def send(self, event: Any) -> Any:
        return self.sender(event)

    def cancel(self) -> None:
        if self.cancel_func is not None:
            self.cancel_func()


class StreamManager:
    """Thread-safe table of streams grouped by project and service name."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._alive: dict[str, dict[str, Stream]] = {}
        self._host_index: dict[str, tuple[str, str]] = {}

    @staticmethod
    def _group_key(system: int, service_name: str) -> str:
        return f"{system}/{service_name}"

    @staticmethod
    def _service_key(info: NodeMeta) -> str:
        return (f"{info.region}_{info.system}_{info.service_name}_"
                f"{info.host}_{info.port}_{info.register_time}")

    def save_stream(
        self,
        info: NodeMeta,
        sender: Callable[[Any], Any],
        cancel: Callable[[], Any] | None = None,
    ) -> Stream:
        group = self._group_key(info.system, info.service_name)
        service = self._service_key(info)
        stream = Stream(
            sender=sender,
            cancel_func=cancel,
            create_time=_from_unix_nanos(info.register_time),
            host=info.host,
            port=info.port,
            service_name=info.service_name,
            region=info.region,
            system=info.system,
        )
        with self._lock:
            self._alive.setdefault(group, {})[service] = stream
            self._host_index[info.address] = (group, service)
        return stream

    def remove_stream(self, info: NodeMeta) -> None:
        group = self._group_key(info.system, info.service_name)
        with self._lock:
            streams = self._alive.get(group)
            if streams is None:
                return
            streams.pop(self._service_key(info), None)
            if not streams:
                del self._alive[group]

    def get_stream_by_host(self, host: str) -> Stream | None:
        """Find the stream last saved for ``host:port``."""
        with self._lock:
            index = self._host_index.get(host)
            if index is None:
                return None
            group, service = index
            return self._alive.get(group, {}).get(service)

    def get_streams(self, system: int, service_name: str) -> dict[str, Stream] | None:
        with self._lock:
            streams = self._alive.get(self._group_key(system, service_name))
            return None if streams is None else dict(streams)


@dataclass
class AgentTaskHash:
    """The plan hash an agent reported for a project."""

    addr: str
    hash: str
    latest_time: int


def find_stale_agents(hashes: Iterable[AgentTaskHash]) -> list[str]:
    """Return addresses of agents whose plan hash is older than a differing one."""
    stale: list[str] = []
    current: AgentTaskHash | None = None
    before: list[str] = []
    for item in hashes:
        if current is None:
            current = AgentTaskHash(item.addr, item.hash, item.latest_time)
            before = [item.addr]
        elif item.hash != current.hash:
            if item.latest_time <= current.latest_time:
                stale.append(item.addr)
                before.append(item.addr)
            else:
                current.latest_time = item.latest_time
                current.hash = item.hash
                stale.extend(before)
                before = []
    return stale