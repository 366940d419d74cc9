"""In-memory shell process for tests and demos."""

from __future__ import annotations

import itertools
import queue
import threading
from dataclasses import dataclass, field

from termhub.terminal.models import ExitStatus
from termhub.terminal.process import ShellProcess, SpawnRequest

_pids = itertools.count(40000)
_EOF = object()


class FakeShellProcess:
    """Line-oriented stand-in for a shell.

    Understands ``echo <text>`` and ``exit [code]``; anything else prints a
    "command not found" line. Tests can also inject output directly with
    :meth:`emit` / :meth:`emit_stderr` and end the process with :meth:`finish`.
    """

    has_stderr = True

    def __init__(self, request: SpawnRequest | None = None, *, prompt: str = "$ ", echo: bool = True) -> None:
        self.request = request
        self.pid = next(_pids)
        self.prompt = prompt
        self.echo = echo
        self.writes: list[bytes] = []
        self.size: tuple[int, int] | None = None
        if request is not None:
            self.size = (request.cols, request.rows)
        self.closed = False
        self.terminated = False
        self.fail_writes: Exception | None = None
        self._stdout: queue.Queue[object] = queue.Queue()
        self._stderr: queue.Queue[object] = queue.Queue()
        self._pending = {"stdout": b"", "stderr": b""}
        self._line = bytearray()
        self._lock = threading.Lock()
        self._status: ExitStatus | None = None
        self._exited = threading.Event()
        if prompt:
            self.emit(prompt.encode("utf-8"))

    def emit(self, data: bytes) -> None:
        self._stdout.put(data)

    def emit_stderr(self, data: bytes) -> None:
        self._stderr.put(data)

    def finish(self, code: int | None = 0, signal: int | None = None) -> None:
        with self._lock:
            if self._status is not None:
                return
            self._status = ExitStatus(code=code, signal=signal)
        self._stdout.put(_EOF)
        self._stderr.put(_EOF)
        self._exited.set()

    def read(self, size: int) -> bytes:
        return self._take(self._stdout, "stdout", size)

    def read_stderr(self, size: int) -> bytes:
        return self._take(self._stderr, "stderr", size)

    def write(self, data: bytes) -> int:
        if self.fail_writes is not None:
            raise self.fail_writes
        if self._exited.is_set():
            raise BrokenPipeError("fake shell has exited")
        self.writes.append(data)
        if self.echo:
            self.emit(data)
        for byte in data:
            if byte in (0x0A, 0x0D):
                self._run(self._line.decode("utf-8", errors="replace").strip())
                self._line.clear()
            else:
                self._line.append(byte)
        return len(data)

    def set_size(self, cols: int, rows: int) -> None:
        if self._exited.is_set():
            raise OSError("fake shell has exited")
        self.size = (cols, rows)

    def terminate(self, force: bool = False) -> bool:
        self.terminated = True
        self.finish(code=None, signal=9 if force else 15)
        return True

    def wait(self) -> ExitStatus:
        self._exited.wait()
        return self._status or ExitStatus()

    def isalive(self) -> bool:
        return not self._exited.is_set()

    def close(self) -> None:
        self.closed = True

    def _run(self, command: str) -> None:
        if not command:
            self.emit(self.prompt.encode("utf-8"))
            return
        name, _, rest = command.partition(" ")
        if name == "echo":
            self.emit(f"\r\n{rest}\r\n".encode())
        elif name == "exit":
            code = int(rest) if rest.strip().isdigit() else 0
            self.finish(code=code)
            return
        else:
            self.emit(f"\r\nfake: command not found: {name}\r\n".encode())
        self.emit(self.prompt.encode("utf-8"))

    def _take(self, source: queue.Queue[object], stream: str, size: int) -> bytes:
        pending = self._pending[stream]
        if not pending:
            item = source.get()
            if item is _EOF:
                # Leave the marker for any later reader of the same stream.
                source.put(_EOF)
                raise EOFError(f"fake {stream} closed")
            pending = bytes(item)  # type: ignore[arg-type]
        chunk, self._pending[stream] = pending[:size], pending[size:]
        return chunk


@dataclass
class FakeSpawner:
    """Callable spawner that records every request and the process it produced."""

    prompt: str = "$ "
    fail_with: Exception | None = None
    requests: list[SpawnRequest] = field(default_factory=list)
    processes: list[FakeShellProcess] = field(default_factory=list)

    def __call__(self, request: SpawnRequest) -> ShellProcess:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        process = FakeShellProcess(request, prompt=self.prompt)
        self.processes.append(process)
        return process
