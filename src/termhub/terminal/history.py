"""Bounded command history fed from the user-input path."""

from __future__ import annotations

import codecs
import logging as py_logging
import threading
from collections import deque
from collections.abc import Callable

from termhub.errors import ExitCode, TermHubError

logger = py_logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 1000

HistoryListener = Callable[[list[str]], None]

_BACKSPACES = {"\x7f", "\b"}
_LINE_ENDINGS = {"\r", "\n"}


class HistoryBuffer:
    """FIFO of submitted command lines; the oldest entry is evicted at capacity."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_SIZE) -> None:
        if capacity < 1:
            raise TermHubError(
                f"Invalid history capacity: {capacity}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use a capacity of at least 1.",
            )
        self._entries: deque[str] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._listeners: list[HistoryListener] = []

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def append(self, command: str) -> None:
        entry = command.strip()
        if not entry:
            return
        with self._lock:
            self._entries.append(entry)
            snapshot = list(self._entries)
        self._notify(snapshot)

    def entries(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        self._notify([])

    def subscribe(self, listener: HistoryListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, snapshot: list[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("History listener failed")


class InputLineTracker:
    """Reassembles keystroke chunks into submitted lines for one session."""

    def __init__(self, history: HistoryBuffer) -> None:
        self._history = history
        self._pending: list[str] = []
        # Keystrokes can split a multibyte character across writes.
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        return "".join(self._pending)

    def feed(self, chunk: bytes) -> list[str]:
        submitted: list[str] = []
        text = self._decoder.decode(chunk)
        index = 0
        while index < len(text):
            char = text[index]
            if char in _LINE_ENDINGS:
                line = "".join(self._pending)
                self._pending.clear()
                if line.strip():
                    submitted.append(line)
                    self._history.append(line)
                # CRLF counts as a single submission.
                if char == "\r" and text[index + 1 : index + 2] == "\n":
                    index += 1
            elif char in _BACKSPACES:
                if self._pending:
                    self._pending.pop()
            elif char == "\x03":
                self._pending.clear()
            elif char == "\x1b":
                index = _skip_escape(text, index)
                continue
            elif char.isprintable() or char == "\t":
                self._pending.append(char)
            index += 1
        return submitted


def _skip_escape(text: str, index: int) -> int:
    # CSI sequences (arrow keys etc.) end with a byte in the @..~ range.
    if text[index + 1 : index + 2] == "[":
        cursor = index + 2
        while cursor < len(text) and not ("@" <= text[cursor] <= "~"):
            cursor += 1
        return cursor + 1
    return index + 2
