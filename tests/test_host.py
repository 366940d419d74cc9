from __future__ import annotations

import sys
import threading
from collections.abc import Callable, Iterator

import pytest
from pydantic import BaseModel

from termhub.config import AppConfig
from termhub.host import TerminalHost
from termhub.protocol import (
    AckResponse,
    ActivateRequest,
    CreatedResponse,
    CreateRequest,
    DataEvent,
    DisposedResponse,
    DisposeRequest,
    ErrorEvent,
    ExitEvent,
    ListRequest,
    ResizeRequest,
    SessionsResponse,
    SplitRequest,
    WriteRequest,
)
from termhub.terminal.fake import FakeSpawner


class _Outbox:
    def __init__(self) -> None:
        self.messages: list[BaseModel] = []
        self._lock = threading.Lock()

    def __call__(self, message: BaseModel) -> None:
        with self._lock:
            self.messages.append(message)

    def of_type(self, kind: type) -> list:
        with self._lock:
            return [message for message in self.messages if isinstance(message, kind)]

    def data(self, session_id: str) -> bytes:
        return b"".join(event.payload() for event in self.of_type(DataEvent) if event.session_id == session_id)


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner(prompt="$ ")


@pytest.fixture
def host(spawner: FakeSpawner, fake_environ: dict[str, str]) -> Iterator[TerminalHost]:
    config = AppConfig(reconnect_grace_seconds=0)
    terminal_host = TerminalHost.build(config, spawn=spawner, environ=fake_environ)
    yield terminal_host
    terminal_host.shutdown()


@pytest.fixture
def outbox(host: TerminalHost) -> _Outbox:
    box = _Outbox()
    host.connect("ui", box)
    return box


def _create(host: TerminalHost, outbox: _Outbox, **fields: object) -> str:
    host.handle("ui", CreateRequest(request_id="r1", **fields))  # type: ignore[arg-type]
    created = outbox.of_type(CreatedResponse)[-1]
    assert created.error is None
    assert created.session_id is not None
    return created.session_id


def test_create_replies_before_replaying_output(
    host: TerminalHost, outbox: _Outbox, wait_until: Callable[..., bool]
) -> None:
    session_id = _create(host, outbox)

    assert isinstance(outbox.messages[0], CreatedResponse)
    assert outbox.messages[0].request_id == "r1"
    assert wait_until(lambda: outbox.data(session_id) == b"$ ")


def test_echo_scenario_sees_data_before_exit(
    host: TerminalHost, outbox: _Outbox, wait_until: Callable[..., bool]
) -> None:
    session_id = _create(host, outbox, profile="default")

    host.handle("ui", WriteRequest(session_id=session_id, data="echo hi\n"))
    assert wait_until(lambda: b"hi\r\n" in outbox.data(session_id))
    host.handle("ui", WriteRequest(session_id=session_id, data="exit 4\n"))

    assert wait_until(lambda: bool(outbox.of_type(ExitEvent)))
    exit_event = outbox.of_type(ExitEvent)[0]
    assert (exit_event.session_id, exit_event.code, exit_event.signal) == (session_id, 4, None)
    first_data = next(
        index
        for index, message in enumerate(outbox.messages)
        if isinstance(message, DataEvent) and b"hi" in message.payload()
    )
    assert first_data < outbox.messages.index(exit_event)
    assert wait_until(lambda: host.registry.get_session(session_id) is None)


def test_unknown_profile_returns_error_response(host: TerminalHost, outbox: _Outbox) -> None:
    host.handle("ui", CreateRequest(request_id="r2", profile="never-registered"))

    created = outbox.of_type(CreatedResponse)[0]
    assert created.session_id is None
    assert created.error is not None and created.error.kind == "ProfileNotFound"
    assert len(host.registry) == 0


def test_spawn_error_returns_error_response(host: TerminalHost, outbox: _Outbox, spawner: FakeSpawner) -> None:
    spawner.fail_with = PermissionError("denied")

    response = host.create("ui", request_id="r3")

    assert response.error is not None and response.error.kind == "SpawnError"
    assert outbox.of_type(CreatedResponse) == []


def test_dispose_then_write_reports_session_not_found(host: TerminalHost, outbox: _Outbox) -> None:
    session_id = _create(host, outbox)

    host.handle("ui", DisposeRequest(request_id="d1", session_id=session_id))
    host.handle("ui", DisposeRequest(request_id="d2", session_id=session_id))
    host.handle("ui", WriteRequest(session_id=session_id, data="ls\n"))

    disposed = outbox.of_type(DisposedResponse)
    assert [(item.request_id, item.ok) for item in disposed] == [("d1", True), ("d2", False)]
    errors = outbox.of_type(ErrorEvent)
    assert errors[-1].kind == "SessionNotFound"
    assert errors[-1].session_id == session_id
    assert host.write(session_id, b"x") is not None


def test_resize_is_silent_for_unknown_sessions(host: TerminalHost, outbox: _Outbox, spawner: FakeSpawner) -> None:
    session_id = _create(host, outbox)
    before = len(outbox.messages)

    host.handle("ui", ResizeRequest(session_id="ghost", cols=100, rows=40))
    host.handle("ui", ResizeRequest(session_id=session_id, cols=100, rows=40))

    assert spawner.processes[0].size == (100, 40)
    assert len(host.registry) == 1
    assert not any(isinstance(m, ErrorEvent) for m in outbox.messages[before:])


def test_broken_stdin_is_pushed_as_scoped_error(host: TerminalHost, outbox: _Outbox, spawner: FakeSpawner) -> None:
    session_id = _create(host, outbox)
    spawner.processes[0].fail_writes = BrokenPipeError("stdin closed")

    host.handle("ui", WriteRequest(session_id=session_id, data="ls\n"))

    errors = outbox.of_type(ErrorEvent)
    assert [(e.session_id, e.kind) for e in errors] == [(session_id, "WriteFailure")]
    assert host.registry.get_session(session_id) is None


def test_invalid_base64_write_is_reported(host: TerminalHost, outbox: _Outbox) -> None:
    session_id = _create(host, outbox)

    host.handle("ui", WriteRequest(session_id=session_id, data="%%%", encoding="base64"))

    assert outbox.of_type(ErrorEvent)[-1].session_id == session_id


def test_split_activate_and_list(host: TerminalHost, outbox: _Outbox) -> None:
    parent = _create(host, outbox)

    host.handle("ui", SplitRequest(request_id="s1", session_id=parent, direction="horizontal"))
    child = outbox.of_type(CreatedResponse)[-1].session_id
    host.handle("ui", ActivateRequest(request_id="a1", session_id=child))
    host.handle("ui", ActivateRequest(request_id="a2", session_id="ghost"))
    host.handle("ui", ListRequest(request_id="l1"))

    assert child is not None
    assert host.splits.find_split_view(child) is not None
    acks = outbox.of_type(AckResponse)
    assert acks[0].error is None
    assert acks[1].error is not None and acks[1].error.kind == "SessionNotFound"
    listing = outbox.of_type(SessionsResponse)[0]
    assert {info.id for info in listing.sessions} == {parent, child}
    assert [info.id for info in listing.sessions if info.active] == [child]
    assert all(info.host_id == "ui" for info in listing.sessions)


def test_split_of_unknown_session_returns_error(host: TerminalHost, outbox: _Outbox) -> None:
    host.handle("ui", SplitRequest(request_id="s1", session_id="ghost"))

    created = outbox.of_type(CreatedResponse)[0]
    assert created.error is not None and created.error.kind == "SessionNotFound"


def test_disconnect_with_zero_grace_disposes_host_sessions(host: TerminalHost, outbox: _Outbox) -> None:
    session_id = _create(host, outbox)

    host.disconnect("ui")

    assert host.registry.get_session(session_id) is None


def test_build_registers_configured_profiles(spawner: FakeSpawner, fake_environ: dict[str, str]) -> None:
    config = AppConfig(profiles={"py": {"command": "python3", "args": ["-q"], "theme": "light"}})

    terminal_host = TerminalHost.build(config, spawn=spawner, environ=fake_environ)

    profile = terminal_host.catalog.get_profile("py")
    assert profile.args == ("-q",)
    assert profile.theme == "light"
    assert terminal_host.bridge.buffer_limit == config.output_buffer_bytes
    assert terminal_host.history.capacity == config.history_size
    terminal_host.shutdown()


def test_explicit_shell_override_is_used(fake_environ: dict[str, str]) -> None:
    spawner = FakeSpawner(prompt="")
    terminal_host = TerminalHost.build(
        AppConfig(shell=sys.executable),
        spawn=spawner,
        environ={"PATH": fake_environ["PATH"]},
    )

    response = terminal_host.create("ui")

    assert response.session_id is not None
    assert spawner.requests[0].argv[0] == sys.executable
    terminal_host.shutdown()


def test_shell_exiting_during_create_still_reports_created_data_then_exit(
    host: TerminalHost, outbox: _Outbox, spawner: FakeSpawner, monkeypatch: pytest.MonkeyPatch
) -> None:
    original = host.supervisor.start

    def start(session_id, profile, *, on_exit, **kwargs):
        delivered = threading.Event()

        def on_exit_then_mark(exited_id, status):
            on_exit(exited_id, status)
            delivered.set()

        handle = original(session_id, profile, on_exit=on_exit_then_mark, **kwargs)
        spawner.processes[-1].emit(b"hi\r\n")
        spawner.processes[-1].finish(0)
        assert delivered.wait(5)
        return handle

    monkeypatch.setattr(host.supervisor, "start", start)

    session_id = _create(host, outbox)

    kinds = [type(message) for message in outbox.messages]
    assert kinds[0] is CreatedResponse
    assert kinds[-1] is ExitEvent
    assert set(kinds[1:-1]) == {DataEvent}
    assert outbox.data(session_id) == b"$ hi\r\n"
    exit_event = outbox.of_type(ExitEvent)[0]
    assert (exit_event.session_id, exit_event.code) == (session_id, 0)
    assert host.registry.get_session(session_id) is None
    assert not host.bridge.has_session(session_id)
