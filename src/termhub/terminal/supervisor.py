"""Child shell lifecycle: spawn, stdio wiring, exit detection and kill."""

from __future__ import annotations

import atexit
import logging as py_logging
import os
import threading
from collections.abc import Callable, Mapping
from contextlib import suppress

from termhub.errors import (
    ExitCode,
    ProcessAlreadyTerminated,
    SessionNotFound,
    SpawnError,
    TermHubError,
    WriteFailure,
)
from termhub.logging import session_logger
from termhub.terminal.models import DEFAULT_COLS, DEFAULT_ROWS, ExitStatus, TerminalProfile
from termhub.terminal.process import ShellProcess, ShellSpawn, SpawnRequest, spawn_pty_process
from termhub.terminal.shell import build_shell_command, locate_executable, resolve_working_directory

logger = py_logging.getLogger(__name__)

STDOUT = "stdout"
STDERR = "stderr"
DEFAULT_READ_SIZE = 4096

OutputListener = Callable[[str, str, bytes], None]
ExitListener = Callable[[str, ExitStatus], None]


class ProcessHandle:
    """Exclusive owner of one child process and its reader threads."""

    def __init__(
        self,
        session_id: str,
        process: ShellProcess,
        command: tuple[str, ...],
        *,
        on_output: OutputListener,
        on_exit: ExitListener,
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        self.session_id = session_id
        self.command = command
        self._log = session_logger(logger, session_id)
        self.pid = process.pid
        self._process = process
        self._on_output = on_output
        self._on_exit = on_exit
        self._read_size = read_size
        self._lock = threading.Lock()
        self._open_streams = 0
        self._killed = False
        self._exit_status: ExitStatus | None = None
        self._threads: list[threading.Thread] = []

    @property
    def exited(self) -> bool:
        return self._exit_status is not None

    @property
    def exit_status(self) -> ExitStatus | None:
        return self._exit_status

    @property
    def terminated(self) -> bool:
        return self._killed or self._exit_status is not None

    def start_readers(self) -> None:
        streams = [STDOUT, STDERR] if self._process.has_stderr else [STDOUT]
        self._open_streams = len(streams)
        for stream in streams:
            thread = threading.Thread(
                target=self._read_loop,
                args=(stream,),
                name=f"termhub-{stream}-{self.session_id[:8]}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout)

    def write(self, data: bytes) -> None:
        if self.terminated:
            raise ProcessAlreadyTerminated(
                f"Process already terminated: {self.session_id}",
                hint="Create a new session to keep working.",
            )
        try:
            self._process.write(data)
        except OSError as exc:
            if self.terminated or not self._process.isalive():
                raise ProcessAlreadyTerminated(
                    f"Process already terminated: {self.session_id}",
                    hint="Create a new session to keep working.",
                ) from exc
            raise WriteFailure(
                f"Failed to write to session {self.session_id}.",
                hint=str(exc) or "Verify terminal process health.",
            ) from exc

    def resize(self, cols: int, rows: int) -> bool:
        if cols <= 0 or rows <= 0:
            raise TermHubError(
                f"Invalid terminal size: {cols}x{rows}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use positive terminal row/column values.",
            )
        if self.terminated:
            self._log.debug("Ignoring resize; process already terminated")
            return False
        try:
            self._process.set_size(cols, rows)
        except Exception as exc:
            # Window size is advisory; a shell mid-teardown may already have closed its pty.
            self._log.warning("Resize failed: %s", exc)
            return False
        return True

    def kill(self) -> None:
        with self._lock:
            if self._killed or self._exit_status is not None:
                return
            self._killed = True
        self._log.info("Killing process pid=%s", self.pid)
        with suppress(Exception):
            self._process.terminate(force=True)
        if not self._threads:
            self._process.close()

    def _read_loop(self, stream: str) -> None:
        read = self._process.read if stream == STDOUT else self._process.read_stderr
        while True:
            try:
                chunk = read(self._read_size)
            except (EOFError, OSError):
                break
            if not chunk:
                continue
            try:
                self._on_output(self.session_id, stream, chunk)
            except Exception:
                self._log.exception("Output listener failed")
        self._stream_closed()

    def _stream_closed(self) -> None:
        with self._lock:
            self._open_streams -= 1
            if self._open_streams > 0:
                return
        status = self._process.wait()
        self._process.close()
        with self._lock:
            if self._exit_status is not None:
                return
            self._exit_status = status
        self._log.info("Process exited pid=%s code=%s signal=%s", self.pid, status.code, status.signal)
        self._on_exit(self.session_id, status)


class ProcessSupervisor:
    """Turns a profile into running child processes keyed by session ID."""

    def __init__(
        self,
        spawn: ShellSpawn | None = None,
        *,
        read_size: int = DEFAULT_READ_SIZE,
        strict_cwd: bool = False,
        environ: Mapping[str, str] | None = None,
        platform: str | None = None,
    ) -> None:
        self._spawn = spawn or spawn_pty_process
        self._read_size = read_size
        self._strict_cwd = strict_cwd
        self._environ = environ
        self._platform = platform
        self._lock = threading.Lock()
        self._handles: dict[str, ProcessHandle] = {}
        atexit.register(self.kill_all)

    def start(
        self,
        session_id: str,
        profile: TerminalProfile,
        *,
        on_output: OutputListener,
        on_exit: ExitListener,
        cwd: str = "",
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
        shell: str = "",
        env: Mapping[str, str] | None = None,
    ) -> ProcessHandle:
        with self._lock:
            if session_id in self._handles:
                raise TermHubError(
                    f"Process already started: {session_id}",
                    code=ExitCode.VALIDATION_ERROR,
                    hint="Kill the current process before starting a new one.",
                )
        if cols <= 0 or rows <= 0:
            raise SpawnError(
                f"Invalid terminal size: {cols}x{rows}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use positive terminal row/column values.",
            )

        base_env = dict(os.environ if self._environ is None else self._environ)
        command = build_shell_command(
            profile,
            shell_override=shell,
            platform=self._platform,
            environ=base_env,
        )
        executable = locate_executable(command[0], environ=self._environ)
        working_dir = resolve_working_directory(cwd or profile.cwd, strict=self._strict_cwd)
        merged_env = {**base_env, **profile.env, **dict(env or {})}
        merged_env.setdefault("TERM", "xterm-256color")
        request = SpawnRequest(
            argv=(executable, *command[1:]),
            cwd=working_dir,
            env=merged_env,
            cols=cols,
            rows=rows,
        )

        try:
            process = self._spawn(request)
        except TermHubError:
            raise
        except FileNotFoundError as exc:
            raise SpawnError(f"Shell executable not found: {command[0]}", hint=str(exc)) from exc
        except PermissionError as exc:
            raise SpawnError(f"Permission denied: {command[0]}", hint=str(exc)) from exc
        except Exception as exc:
            raise SpawnError(
                "Failed to start shell process.",
                hint=str(exc) or "Check the shell installation.",
            ) from exc

        handle = ProcessHandle(
            session_id,
            process,
            request.argv,
            on_output=on_output,
            on_exit=lambda sid, status: self._handle_exit(sid, status, on_exit),
            read_size=self._read_size,
        )
        with self._lock:
            self._handles[session_id] = handle
        handle.start_readers()
        logger.info("Started process pid=%s session=%s command=%s", handle.pid, session_id, request.argv)
        return handle

    def get(self, session_id: str) -> ProcessHandle | None:
        with self._lock:
            return self._handles.get(session_id)

    def write(self, session_id: str, data: bytes) -> None:
        self._require_handle(session_id).write(data)

    def interrupt(self, session_id: str) -> None:
        # Ctrl+C passthrough for interactive shells.
        self.write(session_id, b"\x03")

    def resize(self, session_id: str, cols: int, rows: int) -> bool:
        handle = self.get(session_id)
        if handle is None:
            return False
        return handle.resize(cols, rows)

    def kill(self, session_id: str) -> bool:
        with self._lock:
            handle = self._handles.pop(session_id, None)
        if handle is None:
            return False
        handle.kill()
        return True

    def kill_all(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.kill()

    def close(self) -> None:
        """Kill every process and drop the interpreter-exit hook holding this supervisor."""
        self.kill_all()
        atexit.unregister(self.kill_all)

    def list_handles(self) -> list[ProcessHandle]:
        with self._lock:
            return [self._handles[key] for key in sorted(self._handles)]

    def _require_handle(self, session_id: str) -> ProcessHandle:
        handle = self.get(session_id)
        if handle is None:
            raise SessionNotFound(
                f"No running process for session: {session_id}",
                hint="Select a running terminal session.",
            )
        return handle

    def _handle_exit(self, session_id: str, status: ExitStatus, on_exit: ExitListener) -> None:
        with self._lock:
            current = self._handles.get(session_id)
            if current is not None and current.exited:
                del self._handles[session_id]
        on_exit(session_id, status)
