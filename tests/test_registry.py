from datetime import datetime, timedelta

import pytest

from cronkeeper.registry import (
    AgentTaskHash,
    NodeMeta,
    Stream,
    StreamManager,
    find_stale_agents,
)


def _node(host="10.0.0.1", port=7000, system=3, register_time=0):
    return NodeMeta("region-a", system, "agent.Service", host, port, register_time)


def test_save_and_get_streams():
    manager = StreamManager()
    sent = []
    stream = manager.save_stream(_node(), sent.append)
    streams = manager.get_streams(3, "agent.Service")
    assert list(streams.values()) == [stream]
    assert stream.host == "10.0.0.1"
    assert stream.port == 7000


def test_get_streams_missing_returns_none():
    manager = StreamManager()
    assert manager.get_streams(1, "agent.Service") is None


def test_get_stream_by_host():
    manager = StreamManager()
    stream = manager.save_stream(_node(), lambda e: None)
    assert manager.get_stream_by_host("10.0.0.1:7000") is stream
    assert manager.get_stream_by_host("10.0.0.2:7000") is None


def test_remove_last_stream_drops_group():
    manager = StreamManager()
    node = _node()
    manager.save_stream(node, lambda e: None)
    manager.remove_stream(node)
    assert manager.get_streams(3, "agent.Service") is None
    assert manager.get_stream_by_host("10.0.0.1:7000") is None


def test_remove_one_of_two_keeps_other():
    manager = StreamManager()
    first = _node(host="10.0.0.1")
    second = _node(host="10.0.0.2")
    manager.save_stream(first, lambda e: None)
    kept = manager.save_stream(second, lambda e: None)
    manager.remove_stream(first)
    assert list(manager.get_streams(3, "agent.Service").values()) == [kept]


def test_remove_unknown_is_noop():
    manager = StreamManager()
    manager.save_stream(_node(), lambda e: None)
    manager.remove_stream(_node(system=9))
    assert len(manager.get_streams(3, "agent.Service")) == 1


def test_register_time_is_nanoseconds():
    ns = 1_500_000_000 * 10**9 + 250_000_000
    stream = StreamManager().save_stream(_node(register_time=ns), lambda e: None)
    assert stream.create_time == datetime.fromtimestamp(1_500_000_000) + timedelta(milliseconds=250)


def test_stream_send_and_cancel():
    sent = []
    cancelled = []
    stream = Stream(sent.append, lambda: cancelled.append(True), datetime.now(),
                    "h", 1, "svc", "r", 1)
    stream.send("event")
    stream.cancel()
    assert sent == ["event"]
    assert cancelled == [True]


def test_send_error_propagates():
    def boom(event):
        raise ConnectionError("closed")

    stream = Stream(boom, None, datetime.now(), "h", 1, "svc", "r", 1)
    with pytest.raises(ConnectionError):
        stream.send("event")


def test_same_hashes_nothing_stale():
    hashes = [AgentTaskHash("a", "h1", 5), AgentTaskHash("b", "h1", 3)]
    assert find_stale_agents(hashes) == []


def test_single_agent_nothing_stale():
    assert find_stale_agents([AgentTaskHash("a", "h1", 5)]) == []


def test_older_differing_agent_is_stale():
    hashes = [AgentTaskHash("a", "h1", 5), AgentTaskHash("b", "h2", 3)]
    assert find_stale_agents(hashes) == ["b"]


def test_newer_differing_agent_marks_earlier_stale():
    hashes = [AgentTaskHash("a", "h1", 5), AgentTaskHash("b", "h2", 9)]
    assert find_stale_agents(hashes) == ["a"]