"""Protocol facade wiring the terminal components for one UI host process."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable, Mapping

from pydantic import BaseModel

from termhub.config import AppConfig, build_profiles
from termhub.errors import SessionNotFound, TermHubError
from termhub.protocol import (
    AckResponse,
    ActivateRequest,
    CreatedResponse,
    CreateRequest,
    DataEvent,
    DisposedResponse,
    DisposeRequest,
    ErrorEvent,
    ErrorInfo,
    ExitEvent,
    HelloRequest,
    ListRequest,
    Request,
    ResizeRequest,
    SessionInfo,
    SessionsResponse,
    SplitRequest,
    WriteRequest,
)
from termhub.terminal.bridge import IOBridge, OutputSink
from termhub.terminal.catalog import ProfileThemeCatalog
from termhub.terminal.coordinator import DisposalCoordinator, TimerFactory
from termhub.terminal.history import HistoryBuffer
from termhub.terminal.models import ExitStatus, SessionConfig
from termhub.terminal.process import SPAWNERS, ShellSpawn
from termhub.terminal.registry import SessionEvent, SessionEventKind, SessionRegistry
from termhub.terminal.splits import SplitViewManager
from termhub.terminal.supervisor import ProcessSupervisor

logger = py_logging.getLogger(__name__)

Emitter = Callable[[BaseModel], None]


class TerminalHost:
    """Explicitly constructed set of terminal components behind the message protocol.

    Nothing here raises to the transport: spawn-time failures come back as
    ``{error}`` responses, later failures as scoped ``error`` events.
    """

    def __init__(
        self,
        *,
        catalog: ProfileThemeCatalog,
        supervisor: ProcessSupervisor,
        bridge: IOBridge,
        registry: SessionRegistry,
        splits: SplitViewManager,
        coordinator: DisposalCoordinator,
        history: HistoryBuffer,
        shell: str = "",
    ) -> None:
        self.catalog = catalog
        self.supervisor = supervisor
        self.bridge = bridge
        self.registry = registry
        self.splits = splits
        self.coordinator = coordinator
        self.history = history
        self.shell = shell
        self._lock = threading.Lock()
        self._emitters: dict[str, Emitter] = {}
        self._sinks: dict[str, OutputSink] = {}
        registry.subscribe(self._on_session_event)

    @classmethod
    def build(
        cls,
        config: AppConfig | None = None,
        *,
        spawn: ShellSpawn | None = None,
        timer_factory: TimerFactory | None = None,
        environ: Mapping[str, str] | None = None,
        platform: str | None = None,
    ) -> TerminalHost:
        config = config or AppConfig()
        catalog = ProfileThemeCatalog(profiles=build_profiles(config))
        history = HistoryBuffer(config.history_size)
        bridge = IOBridge(buffer_limit=config.output_buffer_bytes, history=history)
        supervisor = ProcessSupervisor(
            spawn or SPAWNERS[config.backend],
            strict_cwd=config.strict_cwd,
            environ=environ,
            platform=platform,
        )
        registry = SessionRegistry(
            catalog,
            supervisor,
            bridge,
            default_profile=config.default_profile,
            default_theme=config.default_theme,
            default_cols=config.default_cols,
            default_rows=config.default_rows,
        )
        return cls(
            catalog=catalog,
            supervisor=supervisor,
            bridge=bridge,
            registry=registry,
            splits=SplitViewManager(registry),
            coordinator=DisposalCoordinator(
                registry,
                bridge,
                grace_seconds=config.reconnect_grace_seconds,
                timer_factory=timer_factory,
            ),
            history=history,
            shell=config.shell,
        )

    def connect(self, host_id: str, emit: Emitter) -> list[str]:
        """Route ``host_id``'s output and exit notices to ``emit``, replacing any earlier emitter."""

        def sink(session_id: str, chunk: bytes) -> None:
            emit(DataEvent.from_bytes(session_id, chunk))

        def on_exit(session_id: str, status: ExitStatus) -> None:
            emit(ExitEvent(session_id=session_id, code=status.code, signal=status.signal))

        with self._lock:
            self._emitters[host_id] = emit
            self._sinks[host_id] = sink
        return self.coordinator.connect(host_id, sink, on_exit=on_exit)

    def disconnect(self, host_id: str, emit: Emitter | None = None) -> None:
        """Release ``host_id``; with ``emit`` given, only if it is still the current emitter."""
        with self._lock:
            current = self._emitters.get(host_id)
            if emit is not None and current is not emit:
                logger.debug("Ignoring disconnect of host %s from a replaced connection", host_id)
                return
            self._emitters.pop(host_id, None)
            sink = self._sinks.pop(host_id, None)
        self.coordinator.disconnect(host_id, sink)

    def create(
        self,
        host_id: str,
        *,
        request_id: str = "",
        profile: str | None = None,
        theme: str | None = None,
        cwd: str | None = None,
        cols: int | None = None,
        rows: int | None = None,
        title: str | None = None,
        attach: bool = True,
    ) -> CreatedResponse:
        config = SessionConfig(
            profile=profile or "",
            theme=theme or "",
            cwd=cwd or "",
            title=title or "",
            cols=cols or 0,
            rows=rows or 0,
            shell=self.shell,
            host_id=host_id,
        )
        try:
            session = self.registry.create_session(config)
        except TermHubError as exc:
            logger.warning("Session creation failed for host %s: %s", host_id, exc)
            return CreatedResponse(request_id=request_id, error=ErrorInfo.from_error(exc))
        if attach:
            self.coordinator.attach_session(host_id, session.id)
        return CreatedResponse(request_id=request_id, session_id=session.id)

    def write(self, session_id: str, data: bytes) -> ErrorInfo | None:
        try:
            self.registry.write(session_id, data)
        except TermHubError as exc:
            return ErrorInfo.from_error(exc)
        return None

    def resize(self, session_id: str, cols: int, rows: int) -> bool:
        return self.registry.resize(session_id, cols, rows)

    def dispose(self, session_id: str) -> bool:
        return self.coordinator.dispose(session_id)

    def split(
        self,
        host_id: str,
        session_id: str,
        direction: str,
        *,
        request_id: str = "",
        attach: bool = True,
    ) -> CreatedResponse:
        try:
            session = self.splits.create_split(session_id, direction)
        except TermHubError as exc:
            return CreatedResponse(request_id=request_id, error=ErrorInfo.from_error(exc))
        if attach:
            self.coordinator.attach_session(host_id, session.id)
        return CreatedResponse(request_id=request_id, session_id=session.id)

    def activate(self, session_id: str, *, request_id: str = "") -> AckResponse:
        try:
            self.registry.activate_session(session_id)
        except SessionNotFound as exc:
            return AckResponse(request_id=request_id, session_id=session_id, error=ErrorInfo.from_error(exc))
        return AckResponse(request_id=request_id, session_id=session_id)

    def list_sessions(self) -> list[SessionInfo]:
        return [SessionInfo.from_session(session) for session in self.registry.get_all_sessions()]

    def shutdown(self) -> None:
        with self._lock:
            self._emitters.clear()
            self._sinks.clear()
        self.coordinator.shutdown()

    def handle(self, host_id: str, request: Request) -> None:
        """Execute one request and send its response through ``host_id``'s emitter."""
        emit = self._emitter(host_id)
        if isinstance(request, HelloRequest):
            return
        if isinstance(request, CreateRequest):
            created = self.create(
                host_id,
                request_id=request.request_id,
                profile=request.profile,
                theme=request.theme,
                cwd=request.cwd,
                cols=request.cols,
                rows=request.rows,
                title=request.title,
                attach=False,
            )
            self._reply_then_attach(host_id, emit, created)
        elif isinstance(request, SplitRequest):
            created = self.split(
                host_id,
                request.session_id,
                request.direction,
                request_id=request.request_id,
                attach=False,
            )
            self._reply_then_attach(host_id, emit, created)
        elif isinstance(request, WriteRequest):
            try:
                data = request.payload()
            except TermHubError as exc:
                self._send(emit, ErrorEvent.from_error(exc, request.session_id))
                return
            error = self.write(request.session_id, data)
            if error is not None:
                self._send(emit, ErrorEvent(session_id=request.session_id, kind=error.kind, message=error.message))
        elif isinstance(request, ResizeRequest):
            self.resize(request.session_id, request.cols, request.rows)
        elif isinstance(request, DisposeRequest):
            self._send(emit, DisposedResponse(request_id=request.request_id, ok=self.dispose(request.session_id)))
        elif isinstance(request, ActivateRequest):
            self._send(emit, self.activate(request.session_id, request_id=request.request_id))
        elif isinstance(request, ListRequest):
            self._send(emit, SessionsResponse(request_id=request.request_id, sessions=self.list_sessions()))

    def _reply_then_attach(self, host_id: str, emit: Emitter | None, created: CreatedResponse) -> None:
        # The response goes out first so the host knows the ID before replayed output arrives.
        self._send(emit, created)
        if created.session_id is not None:
            self.coordinator.attach_session(host_id, created.session_id)

    def _emitter(self, host_id: str) -> Emitter | None:
        with self._lock:
            return self._emitters.get(host_id)

    def _send(self, emit: Emitter | None, message: BaseModel) -> None:
        if emit is None:
            logger.debug("No emitter connected; dropping %s", type(message).__name__)
            return
        try:
            emit(message)
        except Exception:
            logger.exception("Failed to deliver %s", type(message).__name__)

    def _on_session_event(self, event: SessionEvent) -> None:
        # Exit notices travel through the bridge so they follow the session's last output.
        if event.session is None or event.kind != SessionEventKind.ERROR:
            return
        emit = self._emitter(event.session.host_id)
        kind = event.error.kind if event.error is not None else "TermHubError"
        self._send(emit, ErrorEvent(session_id=event.session_id, kind=kind, message=event.message))
