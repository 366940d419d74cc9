from __future__ import annotations

import os
import sys
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest

from termhub.terminal.bridge import IOBridge
from termhub.terminal.catalog import ProfileThemeCatalog
from termhub.terminal.fake import FakeSpawner
from termhub.terminal.history import HistoryBuffer
from termhub.terminal.registry import SessionEvent, SessionRegistry
from termhub.terminal.supervisor import ProcessSupervisor

_SECURITY_TEST_FILES = {
    "test_shell_resolution.py",
}


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))
        name = path.name

        if "integration" in path.parts:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)

        if name in _SECURITY_TEST_FILES:
            item.add_marker(pytest.mark.security)


@dataclass
class Stack:
    catalog: ProfileThemeCatalog
    supervisor: ProcessSupervisor
    bridge: IOBridge
    registry: SessionRegistry
    history: HistoryBuffer
    spawner: FakeSpawner
    events: list[SessionEvent]

    def kinds(self, session_id: str) -> list[str]:
        return [event.kind.value for event in self.events if event.session_id == session_id]


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    def _wait(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait


@pytest.fixture
def fake_environ() -> dict[str, str]:
    # Any real executable works as the "shell"; the fake spawner never runs it.
    return {"SHELL": sys.executable, "PATH": os.environ.get("PATH", "")}


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner(prompt="")


@pytest.fixture
def stack(spawner: FakeSpawner, fake_environ: dict[str, str]) -> Iterator[Stack]:
    catalog = ProfileThemeCatalog()
    history = HistoryBuffer(20)
    supervisor = ProcessSupervisor(spawner, environ=fake_environ)
    bridge = IOBridge(buffer_limit=4096, history=history)
    registry = SessionRegistry(catalog, supervisor, bridge)
    events: list[SessionEvent] = []
    registry.subscribe(events.append)
    yield Stack(
        catalog=catalog,
        supervisor=supervisor,
        bridge=bridge,
        registry=registry,
        history=history,
        spawner=spawner,
        events=events,
    )
    registry.shutdown()
