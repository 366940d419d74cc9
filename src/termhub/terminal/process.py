"""Shell process backends behind a single ``ShellProcess`` interface."""

from __future__ import annotations

import os
import select
import subprocess
import sys
import threading
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Protocol

from termhub.errors import ExitCode, TermHubError
from termhub.terminal.models import DEFAULT_COLS, DEFAULT_ROWS, ExitStatus

_POLL_SECONDS = 0.2


@dataclass(frozen=True)
class SpawnRequest:
    argv: tuple[str, ...]
    cwd: str
    env: dict[str, str] = field(default_factory=dict)
    cols: int = DEFAULT_COLS
    rows: int = DEFAULT_ROWS


class ShellProcess(Protocol):
    """A running child shell.

    ``read`` returns ``b""`` when nothing arrived within its poll window and
    raises ``EOFError`` once the stream is closed for good.
    """

    pid: int
    has_stderr: bool

    def read(self, size: int) -> bytes: ...

    def read_stderr(self, size: int) -> bytes: ...

    def write(self, data: bytes) -> int: ...

    def set_size(self, cols: int, rows: int) -> None: ...

    def terminate(self, force: bool = False) -> bool: ...

    def wait(self) -> ExitStatus: ...

    def isalive(self) -> bool: ...

    def close(self) -> None: ...


ShellSpawn = Callable[[SpawnRequest], ShellProcess]


class PtyShellProcess:
    """POSIX pseudo-terminal backed by ``ptyprocess``; stderr is merged into the pty."""

    has_stderr = False

    def __init__(self, process: object) -> None:
        self._process = process
        self.pid: int = int(getattr(process, "pid"))
        self._closed = threading.Event()

    def read(self, size: int) -> bytes:
        if self._closed.is_set():
            raise EOFError("pty closed")
        try:
            readable, _, _ = select.select([self._process.fd], [], [], _POLL_SECONDS)
        except (OSError, ValueError) as exc:
            raise EOFError("pty closed") from exc
        if not readable:
            return b""
        return self._process.read(size)

    def read_stderr(self, size: int) -> bytes:
        raise EOFError("pty merges stderr into stdout")

    def write(self, data: bytes) -> int:
        return self._process.write(data)

    def set_size(self, cols: int, rows: int) -> None:
        self._process.setwinsize(rows, cols)

    def terminate(self, force: bool = False) -> bool:
        return bool(self._process.terminate(force=force))

    def wait(self) -> ExitStatus:
        with suppress(Exception):
            self._process.wait()
        return ExitStatus(
            code=getattr(self._process, "exitstatus", None),
            signal=getattr(self._process, "signalstatus", None),
        )

    def isalive(self) -> bool:
        try:
            return bool(self._process.isalive())
        except Exception:
            return False

    def close(self) -> None:
        self._closed.set()
        with suppress(Exception):
            self._process.close(force=True)


class WinPtyShellProcess:
    """Windows ConPTY/winpty process backed by ``pywinpty``."""

    has_stderr = False

    def __init__(self, process: object) -> None:
        self._process = process
        self.pid: int = int(getattr(process, "pid", 0) or 0)

    def read(self, size: int) -> bytes:
        chunk = self._process.read(size)
        if isinstance(chunk, bytes):
            return chunk
        return str(chunk or "").encode("utf-8")

    def read_stderr(self, size: int) -> bytes:
        raise EOFError("pty merges stderr into stdout")

    def write(self, data: bytes) -> int:
        return int(self._process.write(data.decode("utf-8", errors="replace")) or len(data))

    def set_size(self, cols: int, rows: int) -> None:
        self._process.setwinsize(rows, cols)

    def terminate(self, force: bool = False) -> bool:
        return bool(self._process.terminate(force=force))

    def wait(self) -> ExitStatus:
        code: object = None
        with suppress(Exception):
            code = self._process.wait()
        return ExitStatus(code=code if isinstance(code, int) else getattr(self._process, "exitstatus", None))

    def isalive(self) -> bool:
        try:
            return bool(self._process.isalive())
        except Exception:
            return False

    def close(self) -> None:
        with suppress(Exception):
            self._process.close(True)


class PipeShellProcess:
    """Plain pipes without a terminal; keeps stdout and stderr apart."""

    has_stderr = True

    def __init__(self, popen: subprocess.Popen[bytes]) -> None:
        self._popen = popen
        self.pid: int = popen.pid
        self.size: tuple[int, int] | None = None

    def read(self, size: int) -> bytes:
        return _read_pipe(self._popen.stdout, size)

    def read_stderr(self, size: int) -> bytes:
        return _read_pipe(self._popen.stderr, size)

    def write(self, data: bytes) -> int:
        stdin = self._popen.stdin
        if stdin is None:
            raise BrokenPipeError("stdin is not connected")
        written = stdin.write(data)
        stdin.flush()
        return written

    def set_size(self, cols: int, rows: int) -> None:
        # Pipes have no window size; the request is only recorded.
        self.size = (cols, rows)

    def terminate(self, force: bool = False) -> bool:
        if self._popen.poll() is not None:
            return True
        if force:
            self._popen.kill()
        else:
            self._popen.terminate()
        return True

    def wait(self) -> ExitStatus:
        returncode = self._popen.wait()
        if returncode < 0:
            return ExitStatus(code=None, signal=-returncode)
        return ExitStatus(code=returncode)

    def isalive(self) -> bool:
        return self._popen.poll() is None

    def close(self) -> None:
        for stream in (self._popen.stdin, self._popen.stdout, self._popen.stderr):
            if stream is not None:
                with suppress(OSError):
                    stream.close()


def _read_pipe(stream: object, size: int) -> bytes:
    if stream is None:
        raise EOFError("stream is not connected")
    try:
        chunk = os.read(stream.fileno(), size)
    except (OSError, ValueError) as exc:
        raise EOFError("stream closed") from exc
    if not chunk:
        raise EOFError("stream closed")
    return chunk


def spawn_pty_process(request: SpawnRequest) -> ShellProcess:
    if sys.platform.startswith("win"):
        return _spawn_with_pywinpty(request)
    return _spawn_with_ptyprocess(request)


def _spawn_with_ptyprocess(request: SpawnRequest) -> ShellProcess:
    try:
        from ptyprocess import PtyProcess
    except Exception as exc:
        raise TermHubError(
            "ptyprocess backend is unavailable.",
            code=ExitCode.UNSUPPORTED_PLATFORM,
            hint="Install ptyprocess or use the pipe backend.",
        ) from exc

    process = PtyProcess.spawn(
        list(request.argv),
        cwd=request.cwd,
        env=request.env or None,
        dimensions=(request.rows, request.cols),
    )
    return PtyShellProcess(process)


def _spawn_with_pywinpty(request: SpawnRequest) -> ShellProcess:
    try:
        from winpty import PtyProcess
    except Exception as exc:
        raise TermHubError(
            "pywinpty backend is unavailable.",
            code=ExitCode.UNSUPPORTED_PLATFORM,
            hint="Install pywinpty on Windows or use the pipe backend.",
        ) from exc

    kwargs: dict[str, object] = {"dimensions": (request.rows, request.cols)}
    if request.cwd:
        kwargs["cwd"] = request.cwd
    if request.env:
        kwargs["env"] = request.env
    return WinPtyShellProcess(PtyProcess.spawn(subprocess.list2cmdline(list(request.argv)), **kwargs))


def spawn_pipe_process(request: SpawnRequest) -> ShellProcess:
    popen = subprocess.Popen(
        list(request.argv),
        cwd=request.cwd or None,
        env=request.env or None,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        bufsize=0,
    )
    return PipeShellProcess(popen)


SPAWNERS: dict[str, ShellSpawn] = {
    "pty": spawn_pty_process,
    "pipe": spawn_pipe_process,
}
