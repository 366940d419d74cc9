"""Per-session output buffering between process readers and the UI host."""

from __future__ import annotations

import logging as py_logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from termhub.errors import ExitCode, SessionNotFound, TermHubError
from termhub.terminal.history import HistoryBuffer, InputLineTracker
from termhub.terminal.models import ExitStatus

logger = py_logging.getLogger(__name__)

DEFAULT_BUFFER_LIMIT = 64 * 1024

OutputSink = Callable[[str, bytes], None]
InputWriter = Callable[[str, bytes], None]
ExitNotice = Callable[[str, ExitStatus], None]


class OutputBuffer:
    """Bounded byte FIFO; the oldest bytes are evicted once ``limit`` is exceeded."""

    def __init__(self, limit: int = DEFAULT_BUFFER_LIMIT) -> None:
        if limit < 1:
            raise TermHubError(
                f"Invalid output buffer limit: {limit}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use a positive byte count.",
            )
        self.limit = limit
        self.dropped_bytes = 0
        self._chunks: deque[bytes] = deque()
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def append(self, chunk: bytes) -> None:
        if not chunk:
            return
        self._chunks.append(chunk)
        self._size += len(chunk)
        overflow = self._size - self.limit
        while overflow > 0:
            oldest = self._chunks[0]
            if len(oldest) <= overflow:
                self._chunks.popleft()
                self._size -= len(oldest)
                self.dropped_bytes += len(oldest)
                overflow -= len(oldest)
            else:
                self._chunks[0] = oldest[overflow:]
                self._size -= overflow
                self.dropped_bytes += overflow
                overflow = 0

    def peek(self) -> bytes:
        return b"".join(self._chunks)

    def drain(self) -> list[bytes]:
        chunks = list(self._chunks)
        self._chunks.clear()
        self._size = 0
        return chunks


@dataclass
class _Channel:
    buffer: OutputBuffer
    sink: OutputSink | None = None
    on_exit: ExitNotice | None = None
    exit_status: ExitStatus | None = None
    tracker: InputLineTracker | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)


class IOBridge:
    """Routes process output to an attached sink, buffering while detached.

    Every push and every attach for a session runs under that session's lock,
    so a replayed buffer is always delivered before newer live output.
    """

    def __init__(
        self,
        *,
        buffer_limit: int = DEFAULT_BUFFER_LIMIT,
        input_writer: InputWriter | None = None,
        history: HistoryBuffer | None = None,
    ) -> None:
        self.buffer_limit = buffer_limit
        self._input_writer = input_writer
        self._history = history
        self._channels: dict[str, _Channel] = {}
        self._lock = threading.Lock()

    def set_input_writer(self, writer: InputWriter) -> None:
        self._input_writer = writer

    def open(self, session_id: str) -> None:
        with self._lock:
            if session_id in self._channels:
                return
            tracker = InputLineTracker(self._history) if self._history is not None else None
            self._channels[session_id] = _Channel(buffer=OutputBuffer(self.buffer_limit), tracker=tracker)

    def close(self, session_id: str) -> int:
        with self._lock:
            channel = self._channels.pop(session_id, None)
        if channel is None:
            return 0
        with channel.lock:
            discarded = len(channel.buffer)
            channel.buffer.drain()
            channel.sink = None
        if discarded:
            logger.debug("Discarded %s undelivered bytes for session %s", discarded, session_id)
        return discarded

    def has_session(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._channels

    def attach(self, session_id: str, sink: OutputSink, *, on_exit: ExitNotice | None = None) -> int:
        return self.flush_and_attach(session_id, sink, on_exit=on_exit)

    def flush_and_attach(self, session_id: str, sink: OutputSink, *, on_exit: ExitNotice | None = None) -> int:
        """Replay buffered output into ``sink`` and make it the live target.

        A channel whose process already exited is delivered in full, followed
        by ``on_exit``, and then closed. Returns the number of replayed bytes.
        """
        channel = self._require(session_id)
        with channel.lock:
            chunks = channel.buffer.drain()
            replayed = 0
            for index, chunk in enumerate(chunks):
                try:
                    sink(session_id, chunk)
                except Exception:
                    logger.exception("Replay failed for session %s; keeping output buffered", session_id)
                    for remaining in chunks[index:]:
                        channel.buffer.append(remaining)
                    channel.sink = None
                    channel.on_exit = None
                    return replayed
                replayed += len(chunk)
            channel.sink = sink
            channel.on_exit = on_exit
            finished = channel.exit_status is not None
            if finished:
                self._notify_exit(session_id, channel)
        if finished:
            self._forget(session_id, channel)
        logger.debug("Attached session %s replayed=%s finished=%s", session_id, replayed, finished)
        return replayed

    def finish(self, session_id: str, status: ExitStatus) -> bool:
        """Record that the session's process exited after its last output.

        An attached channel gets its exit notice and is closed right away. A
        detached one keeps its buffer and the status until the next attach or
        :meth:`close`. Returns True once the notice has been delivered.
        """
        with self._lock:
            channel = self._channels.get(session_id)
        if channel is None:
            return False
        with channel.lock:
            channel.exit_status = status
            attached = channel.sink is not None
            if attached:
                self._notify_exit(session_id, channel)
        if attached:
            self._forget(session_id, channel)
        else:
            logger.debug(
                "Holding %s bytes and exit status for detached session %s", len(channel.buffer), session_id
            )
        return attached

    def exit_status(self, session_id: str) -> ExitStatus | None:
        channel = self._require(session_id)
        with channel.lock:
            return channel.exit_status

    def detach(self, session_id: str) -> bool:
        with self._lock:
            channel = self._channels.get(session_id)
        if channel is None:
            return False
        with channel.lock:
            attached = channel.sink is not None
            channel.sink = None
            channel.on_exit = None
        return attached

    def is_attached(self, session_id: str) -> bool:
        with self._lock:
            channel = self._channels.get(session_id)
        return channel is not None and channel.sink is not None

    def push(self, session_id: str, chunk: bytes) -> bool:
        with self._lock:
            channel = self._channels.get(session_id)
        if channel is None:
            logger.debug("Dropping %s bytes for unknown session %s", len(chunk), session_id)
            return False
        with channel.lock:
            if channel.sink is not None:
                try:
                    channel.sink(session_id, chunk)
                    return True
                except Exception:
                    logger.exception("Sink failed for session %s; buffering until reattached", session_id)
                    channel.sink = None
                    channel.on_exit = None
            channel.buffer.append(chunk)
        return False

    def buffered(self, session_id: str) -> bytes:
        channel = self._require(session_id)
        with channel.lock:
            return channel.buffer.peek()

    def dropped_bytes(self, session_id: str) -> int:
        channel = self._require(session_id)
        with channel.lock:
            return channel.buffer.dropped_bytes

    def write_user_input(self, session_id: str, chunk: bytes) -> None:
        channel = self._require(session_id)
        if self._input_writer is None:
            raise TermHubError(
                "No process writer is connected to the bridge.",
                code=ExitCode.RUNTIME_ERROR,
                hint="Construct the bridge with an input writer.",
            )
        self._input_writer(session_id, chunk)
        if channel.tracker is not None:
            channel.tracker.feed(chunk)

    def _require(self, session_id: str) -> _Channel:
        with self._lock:
            channel = self._channels.get(session_id)
        if channel is None:
            raise SessionNotFound(
                f"Session not found: {session_id}",
                hint="The session may have been disposed.",
            )
        return channel

    def _notify_exit(self, session_id: str, channel: _Channel) -> None:
        if channel.on_exit is None or channel.exit_status is None:
            return
        try:
            channel.on_exit(session_id, channel.exit_status)
        except Exception:
            logger.exception("Exit notice failed for session %s", session_id)

    def _forget(self, session_id: str, channel: _Channel) -> None:
        with self._lock:
            if self._channels.get(session_id) is channel:
                del self._channels[session_id]
