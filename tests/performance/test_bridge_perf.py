from __future__ import annotations

import time

import pytest

from termhub.terminal.bridge import IOBridge
from termhub.terminal.history import HistoryBuffer


@pytest.mark.performance
def test_detached_push_throughput_stays_within_budget() -> None:
    bridge = IOBridge(buffer_limit=64 * 1024)
    bridge.open("s1")
    chunk = b"x" * 512

    started = time.perf_counter()
    for _ in range(20000):
        bridge.push("s1", chunk)
    elapsed = time.perf_counter() - started

    assert len(bridge.buffered("s1")) == 64 * 1024
    assert elapsed < 2.0, f"detached push loop exceeded budget: {elapsed:.3f}s"


@pytest.mark.performance
def test_attached_push_throughput_stays_within_budget() -> None:
    bridge = IOBridge()
    bridge.open("s1")
    received: list[int] = []
    bridge.attach("s1", lambda _session_id, chunk: received.append(len(chunk)))

    started = time.perf_counter()
    for _ in range(20000):
        bridge.push("s1", b"line of output\r\n")
    elapsed = time.perf_counter() - started

    assert len(received) == 20000
    assert bridge.buffered("s1") == b""
    assert elapsed < 2.0, f"attached push loop exceeded budget: {elapsed:.3f}s"


@pytest.mark.performance
def test_history_append_stays_within_budget() -> None:
    history = HistoryBuffer(100)

    started = time.perf_counter()
    for index in range(20000):
        history.append(f"make target-{index}")
    elapsed = time.perf_counter() - started

    assert len(history) == 100
    assert history.entries()[-1] == "make target-19999"
    assert elapsed < 2.0, f"history append loop exceeded budget: {elapsed:.3f}s"
