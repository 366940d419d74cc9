"""Session registry: lifecycle state machine and active-session pointer."""

from __future__ import annotations

import logging as py_logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum

from termhub.errors import (
    ProcessAlreadyTerminated,
    SessionNotFound,
    SpawnError,
    TermHubError,
    WriteFailure,
)
from termhub.logging import log_session_step
from termhub.terminal.bridge import IOBridge
from termhub.terminal.catalog import DEFAULT_PROFILE_NAME, DEFAULT_THEME_NAME, CatalogChange, ProfileThemeCatalog
from termhub.terminal.models import (
    DEFAULT_COLS,
    DEFAULT_ROWS,
    ExitStatus,
    SessionConfig,
    SessionStatus,
    TerminalSession,
)
from termhub.terminal.supervisor import ProcessSupervisor

logger = py_logging.getLogger(__name__)


class SessionEventKind(str, Enum):
    CREATED = "session_created"
    FAILED = "session_failed"
    EXITED = "session_exited"
    REMOVED = "session_removed"
    ACTIVATED = "session_activated"
    DEACTIVATED = "session_deactivated"
    UPDATED = "session_updated"
    ERROR = "session_error"


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    session_id: str
    session: TerminalSession | None = None
    message: str = ""
    error: TermHubError | None = None


SessionListener = Callable[[SessionEvent], None]
IdFactory = Callable[[], str]


def _new_session_id() -> str:
    return uuid.uuid4().hex


class SessionRegistry:
    """Exclusive owner of session records.

    A single re-entrant lock linearizes create/remove/activate/exit handling.
    Events are published while that lock is held so listeners observe each
    session's transitions in order; process spawn and kill run outside it.
    """

    def __init__(
        self,
        catalog: ProfileThemeCatalog,
        supervisor: ProcessSupervisor,
        bridge: IOBridge,
        *,
        default_profile: str = DEFAULT_PROFILE_NAME,
        default_theme: str = DEFAULT_THEME_NAME,
        default_cols: int = DEFAULT_COLS,
        default_rows: int = DEFAULT_ROWS,
        id_factory: IdFactory | None = None,
    ) -> None:
        self._catalog = catalog
        self._supervisor = supervisor
        self._bridge = bridge
        self.default_profile = default_profile
        self.default_theme = default_theme
        self.default_cols = default_cols
        self.default_rows = default_rows
        self._id_factory = id_factory or _new_session_id
        self._lock = threading.RLock()
        self._sessions: dict[str, TerminalSession] = {}
        self._issued_ids: set[str] = set()
        self._disposing: set[str] = set()
        self._early_exits: dict[str, ExitStatus] = {}
        self._active_id: str | None = None
        self._sequence = 0
        self._listeners: list[SessionListener] = []
        bridge.set_input_writer(supervisor.write)
        catalog.subscribe(self._on_catalog_change)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create_session(self, config: SessionConfig | None = None) -> TerminalSession:
        config = config or SessionConfig()
        profile = self._catalog.get_profile(config.profile or self.default_profile)
        theme_name = config.theme or profile.theme or self.default_theme
        self._catalog.get_theme(theme_name)
        cols = config.cols or self.default_cols
        rows = config.rows or self.default_rows

        with self._lock:
            session_id = self._allocate_id()
            self._sequence += 1
            record = TerminalSession(
                id=session_id,
                profile_name=profile.name,
                theme_name=theme_name,
                cwd=config.cwd or profile.cwd,
                title=config.title or profile.name,
                host_id=config.host_id,
                sequence=self._sequence,
            )
            self._sessions[session_id] = record
        self._bridge.open(session_id)
        self._log(session_id, "connecting", f"Spawning profile '{profile.name}'.")

        try:
            handle = self._supervisor.start(
                session_id,
                profile,
                on_output=self._on_output,
                on_exit=self._on_exit,
                cwd=config.cwd,
                cols=cols,
                rows=rows,
                shell=config.shell,
                env=config.env,
            )
        except TermHubError as exc:
            self._fail(session_id, exc)
            if isinstance(exc, SpawnError):
                raise
            raise SpawnError(exc.message, code=exc.code, hint=exc.hint) from exc

        snapshot: TerminalSession | None = None
        with self._lock:
            early_exit = self._early_exits.pop(session_id, None)
            if session_id in self._sessions and session_id not in self._disposing:
                record.status = SessionStatus.RUNNING
                record.pid = handle.pid
                record.touch()
                self._log(session_id, "running", f"Process pid={handle.pid} is running.")
                self._emit(SessionEventKind.CREATED, record)
                snapshot = replace(record)
        if snapshot is not None:
            if early_exit is not None:
                # The shell finished before it was published as running.
                self._on_exit(session_id, early_exit)
            return snapshot
        # Disposed while the process was starting up.
        self._supervisor.kill(session_id)
        raise SessionNotFound(
            f"Session was disposed during startup: {session_id}",
            hint="Create a new session.",
        )

    def remove_session(self, session_id: str) -> None:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None or session_id in self._disposing:
                raise SessionNotFound(
                    f"Session not found: {session_id}",
                    hint="The session may already have been disposed.",
                )
            self._disposing.add(session_id)
            live = not record.status.is_terminal
        try:
            if live:
                self._supervisor.kill(session_id)
        finally:
            self._discard(session_id, "Session removed.")

    def activate_session(self, session_id: str) -> TerminalSession:
        with self._lock:
            record = self._must_get(session_id)
            if self._active_id == session_id:
                return replace(record)
            self._deactivate_current()
            record.is_active = True
            record.touch()
            self._active_id = session_id
            self._emit(SessionEventKind.ACTIVATED, record)
            return replace(record)

    def deactivate_session(self, session_id: str) -> TerminalSession:
        with self._lock:
            record = self._must_get(session_id)
            if self._active_id == session_id:
                self._deactivate_current()
            return replace(record)

    def update_session(self, session_id: str, *, title: str | None = None) -> TerminalSession:
        with self._lock:
            record = self._must_get(session_id)
            if title is not None:
                record.title = title
            self._emit(SessionEventKind.UPDATED, record, "Session updated.")
            return replace(record)

    def get_session(self, session_id: str) -> TerminalSession | None:
        with self._lock:
            record = self._sessions.get(session_id)
            return replace(record) if record is not None else None

    def get_all_sessions(self) -> list[TerminalSession]:
        with self._lock:
            return [replace(record) for record in self._sessions.values()]

    def get_active_session(self) -> TerminalSession | None:
        with self._lock:
            if self._active_id is None:
                return None
            return replace(self._sessions[self._active_id])

    def write(self, session_id: str, data: bytes) -> bool:
        """Forward user input; returns False when the input was dropped.

        Raises :class:`SessionNotFound` for unknown IDs. A broken stdin pipe is
        published as an ``ERROR`` event and the session is force-removed.
        """
        with self._lock:
            record = self._must_get(session_id)
            record.touch()
        try:
            self._bridge.write_user_input(session_id, data)
        except ProcessAlreadyTerminated as exc:
            logger.info("Ignoring input for terminated session %s: %s", session_id, exc.message)
            return False
        except WriteFailure as exc:
            self._report_error(session_id, exc)
            return False
        return True

    def resize(self, session_id: str, cols: int, rows: int) -> bool:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None or record.status != SessionStatus.RUNNING:
                return False
        try:
            return self._supervisor.resize(session_id, cols, rows)
        except TermHubError as exc:
            logger.warning("Rejected resize for session %s: %s", session_id, exc)
            return False

    def shutdown(self) -> None:
        with self._lock:
            session_ids = list(self._sessions)
        logger.info("Shutting down %s sessions", len(session_ids))
        for session_id in session_ids:
            try:
                self.remove_session(session_id)
            except SessionNotFound:
                continue
        self._supervisor.close()

    def _report_error(self, session_id: str, error: TermHubError) -> None:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return
            record.failure_reason = error.message
            self._emit(SessionEventKind.ERROR, record, error.message, error=error)
        try:
            self.remove_session(session_id)
        except SessionNotFound:
            pass

    def _on_output(self, session_id: str, _stream: str, chunk: bytes) -> None:
        self._bridge.push(session_id, chunk)

    def _on_exit(self, session_id: str, status: ExitStatus) -> None:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None or record.status.is_terminal or session_id in self._disposing:
                return
            if record.status == SessionStatus.CONNECTING:
                self._early_exits[session_id] = status
                return
            record.status = SessionStatus.EXITED
            record.exit_code = status.code
            record.exit_signal = status.signal
            self._disposing.add(session_id)
            self._log(session_id, "exited", f"code={status.code} signal={status.signal}")
            self._emit(SessionEventKind.EXITED, record)
        self._discard(session_id, "Process exited.", exit_status=status)

    def _fail(self, session_id: str, error: TermHubError) -> None:
        with self._lock:
            record = self._sessions.pop(session_id, None)
            self._disposing.discard(session_id)
            self._early_exits.pop(session_id, None)
            if record is not None:
                record.status = SessionStatus.FAILED
                record.failure_reason = error.message
                self._log(session_id, "failed", error.message)
                self._emit(SessionEventKind.FAILED, record, error.message)
        self._bridge.close(session_id)

    def _discard(self, session_id: str, message: str, *, exit_status: ExitStatus | None = None) -> None:
        with self._lock:
            record = self._sessions.pop(session_id, None)
            self._disposing.discard(session_id)
            if record is None:
                return
            was_active = self._active_id == session_id
            if was_active:
                record.is_active = False
                self._active_id = None
                self._emit(SessionEventKind.DEACTIVATED, record)
            self._log(session_id, "removed", message)
            self._emit(SessionEventKind.REMOVED, record, message)
            if was_active:
                self._promote_latest()
        if exit_status is not None:
            # Undelivered output and the exit notice wait for the owning host to attach.
            self._bridge.finish(session_id, exit_status)
        else:
            self._bridge.close(session_id)

    def _promote_latest(self) -> None:
        if not self._sessions:
            return
        latest = max(self._sessions.values(), key=lambda item: item.sequence)
        latest.is_active = True
        latest.touch()
        self._active_id = latest.id
        self._emit(SessionEventKind.ACTIVATED, latest)

    def _deactivate_current(self) -> None:
        if self._active_id is None:
            return
        previous = self._sessions.get(self._active_id)
        self._active_id = None
        if previous is not None:
            previous.is_active = False
            self._emit(SessionEventKind.DEACTIVATED, previous)

    def _allocate_id(self) -> str:
        while True:
            candidate = self._id_factory()
            if candidate and candidate not in self._issued_ids:
                self._issued_ids.add(candidate)
                return candidate
            logger.warning("Session id collision on %r; drawing another", candidate)

    def _must_get(self, session_id: str) -> TerminalSession:
        record = self._sessions.get(session_id)
        if record is None:
            raise SessionNotFound(
                f"Session not found: {session_id}",
                hint="Select an existing terminal session.",
            )
        return record

    def _on_catalog_change(self, change: CatalogChange) -> None:
        if change.kind not in {"theme", "custom_theme"} or change.action != "registered":
            return
        with self._lock:
            for record in self._sessions.values():
                if record.theme_name == change.name:
                    self._emit(SessionEventKind.UPDATED, record, f"Theme '{change.name}' updated.")

    def _emit(
        self,
        kind: SessionEventKind,
        record: TerminalSession,
        message: str = "",
        *,
        error: TermHubError | None = None,
    ) -> None:
        event = SessionEvent(
            kind=kind,
            session_id=record.id,
            session=replace(record),
            message=message,
            error=error,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener failed for %s %s", kind.value, record.id)

    def _log(self, session_id: str, step: str, message: str) -> None:
        log_session_step(logger, session_id, step, message)
