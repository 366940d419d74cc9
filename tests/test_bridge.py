from __future__ import annotations

import pytest

from termhub.errors import SessionNotFound, TermHubError
from termhub.terminal.bridge import DEFAULT_BUFFER_LIMIT, IOBridge, OutputBuffer
from termhub.terminal.history import HistoryBuffer
from termhub.terminal.models import ExitStatus


class _Sink:
    def __init__(self, fail_after: int | None = None) -> None:
        self.chunks: list[bytes] = []
        self.fail_after = fail_after

    def __call__(self, _session_id: str, chunk: bytes) -> None:
        if self.fail_after is not None and len(self.chunks) >= self.fail_after:
            raise BrokenPipeError("host went away")
        self.chunks.append(chunk)

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)


def test_default_buffer_limit_is_64_kib() -> None:
    assert DEFAULT_BUFFER_LIMIT == 65536
    assert IOBridge().buffer_limit == DEFAULT_BUFFER_LIMIT


def test_output_buffer_evicts_oldest_bytes_first() -> None:
    buffer = OutputBuffer(limit=8)
    buffer.append(b"abcd")
    buffer.append(b"efgh")
    buffer.append(b"ij")

    assert buffer.peek() == b"cdefghij"
    assert len(buffer) == 8
    assert buffer.dropped_bytes == 2


def test_output_buffer_rejects_invalid_limit() -> None:
    with pytest.raises(TermHubError):
        OutputBuffer(limit=0)


def test_push_buffers_until_attach_then_replays_in_order() -> None:
    bridge = IOBridge()
    bridge.open("s1")
    bridge.push("s1", b"one ")
    bridge.push("s1", b"two ")
    sink = _Sink()

    replayed = bridge.flush_and_attach("s1", sink)
    bridge.push("s1", b"three")

    assert replayed == 8
    assert sink.data == b"one two three"
    assert bridge.buffered("s1") == b""


def test_detach_resumes_buffering() -> None:
    bridge = IOBridge()
    bridge.open("s1")
    sink = _Sink()
    bridge.attach("s1", sink)
    bridge.push("s1", b"live")

    assert bridge.detach("s1") is True
    assert bridge.is_attached("s1") is False
    assert bridge.push("s1", b"missed") is False
    assert bridge.buffered("s1") == b"missed"

    second = _Sink()
    bridge.attach("s1", second)
    assert second.data == b"missed"
    assert sink.data == b"live"


def test_failing_sink_is_detached_and_output_kept() -> None:
    bridge = IOBridge()
    bridge.open("s1")
    sink = _Sink(fail_after=1)
    bridge.attach("s1", sink)

    assert bridge.push("s1", b"a") is True
    assert bridge.push("s1", b"b") is False

    assert bridge.is_attached("s1") is False
    assert bridge.buffered("s1") == b"b"


def test_failed_replay_keeps_remaining_chunks() -> None:
    bridge = IOBridge()
    bridge.open("s1")
    for chunk in (b"1", b"2", b"3"):
        bridge.push("s1", chunk)

    replayed = bridge.flush_and_attach("s1", _Sink(fail_after=1))

    assert replayed == 1
    assert bridge.buffered("s1") == b"23"
    assert bridge.is_attached("s1") is False


def test_sessions_have_independent_buffers() -> None:
    bridge = IOBridge(buffer_limit=4)
    bridge.open("a")
    bridge.open("b")
    bridge.push("a", b"aaaaaa")
    bridge.push("b", b"bb")

    assert bridge.buffered("a") == b"aaaa"
    assert bridge.dropped_bytes("a") == 2
    assert bridge.buffered("b") == b"bb"

    assert bridge.close("a") == 4
    assert bridge.has_session("a") is False
    assert bridge.buffered("b") == b"bb"


def test_unknown_sessions() -> None:
    bridge = IOBridge()

    assert bridge.push("ghost", b"x") is False
    assert bridge.detach("ghost") is False
    assert bridge.close("ghost") == 0
    with pytest.raises(SessionNotFound):
        bridge.attach("ghost", _Sink())
    with pytest.raises(SessionNotFound):
        bridge.write_user_input("ghost", b"x")


def test_write_user_input_forwards_and_records_history() -> None:
    history = HistoryBuffer(5)
    writes: list[tuple[str, bytes]] = []
    bridge = IOBridge(history=history)
    bridge.set_input_writer(lambda session_id, data: writes.append((session_id, data)))
    bridge.open("s1")

    bridge.write_user_input("s1", b"make test\r")

    assert writes == [("s1", b"make test\r")]
    assert history.entries() == ["make test"]


def test_write_user_input_requires_writer() -> None:
    bridge = IOBridge()
    bridge.open("s1")

    with pytest.raises(TermHubError):
        bridge.write_user_input("s1", b"x")


def test_failed_write_is_not_recorded_in_history() -> None:
    history = HistoryBuffer(5)

    def broken(_session_id: str, _data: bytes) -> None:
        raise TermHubError("pipe broken")

    bridge = IOBridge(input_writer=broken, history=history)
    bridge.open("s1")

    with pytest.raises(TermHubError):
        bridge.write_user_input("s1", b"ls\n")
    assert history.entries() == []


def test_finish_while_attached_notifies_and_closes() -> None:
    bridge = IOBridge()
    bridge.open("s1")
    sink = _Sink()
    notices: list[tuple[str, ExitStatus]] = []
    bridge.attach("s1", sink, on_exit=lambda session_id, status: notices.append((session_id, status)))
    bridge.push("s1", b"done")

    assert bridge.finish("s1", ExitStatus(code=0)) is True

    assert sink.data == b"done"
    assert notices == [("s1", ExitStatus(code=0))]
    assert not bridge.has_session("s1")


def test_finish_while_detached_waits_for_the_next_attach() -> None:
    bridge = IOBridge()
    bridge.open("s1")
    bridge.push("s1", b"tail")

    assert bridge.finish("s1", ExitStatus(code=None, signal=9)) is False
    assert bridge.exit_status("s1") == ExitStatus(code=None, signal=9)

    order: list[object] = []
    bridge.flush_and_attach(
        "s1", lambda _session_id, chunk: order.append(chunk), on_exit=lambda _session_id, status: order.append(status)
    )

    assert order == [b"tail", ExitStatus(code=None, signal=9)]
    assert not bridge.has_session("s1")


def test_failing_exit_listener_still_releases_the_channel() -> None:
    bridge = IOBridge()
    bridge.open("s1")

    def explode(_session_id: str, _status: ExitStatus) -> None:
        raise BrokenPipeError("host went away")

    bridge.attach("s1", _Sink(), on_exit=explode)
    bridge.finish("s1", ExitStatus(code=1))

    assert not bridge.has_session("s1")


def test_finish_of_unknown_session_is_a_no_op() -> None:
    assert IOBridge().finish("ghost", ExitStatus(code=0)) is False
