"""Host connection tracking, reconnect grace windows and session disposal."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from termhub.errors import HostDisconnectTimeout, SessionNotFound
from termhub.terminal.bridge import ExitNotice, IOBridge, OutputSink
from termhub.terminal.registry import SessionEvent, SessionEventKind, SessionRegistry

logger = py_logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 5.0


class GraceTimer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], GraceTimer]


def _thread_timer(interval: float, callback: Callable[[], None]) -> GraceTimer:
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    return timer


@dataclass
class _PendingExpiry:
    generation: int
    timer: GraceTimer


@dataclass
class _Binding:
    sink: OutputSink
    on_exit: ExitNotice | None = None


class DisposalCoordinator:
    """Keeps sessions alive across brief host disconnects.

    A disconnect detaches the host's sessions from the bridge (output keeps
    buffering) and arms a grace timer. Reconnecting with the same host ID
    before it fires replays the buffers; otherwise every session owned by
    that host is disposed. Sessions that exit while their host is away keep
    their output and exit notice until the host comes back or the timer fires.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        bridge: IOBridge,
        *,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self._registry = registry
        self._bridge = bridge
        self.grace_seconds = max(0.0, float(grace_seconds))
        self._timer_factory = timer_factory or _thread_timer
        self._lock = threading.Lock()
        self._bindings: dict[str, _Binding] = {}
        self._pending: dict[str, _PendingExpiry] = {}
        self._finished: dict[str, set[str]] = {}
        self._generation = 0
        registry.subscribe(self._on_session_event)

    def is_connected(self, host_id: str) -> bool:
        with self._lock:
            return host_id in self._bindings

    def pending_hosts(self) -> list[str]:
        with self._lock:
            return sorted(self._pending)

    def owned_sessions(self, host_id: str) -> list[str]:
        return [session.id for session in self._registry.get_all_sessions() if session.host_id == host_id]

    def finished_sessions(self, host_id: str) -> list[str]:
        """Exited sessions of ``host_id`` whose output has not been delivered yet."""
        with self._lock:
            candidates = sorted(self._finished.get(host_id, ()))
        return [session_id for session_id in candidates if self._bridge.has_session(session_id)]

    def connect(self, host_id: str, sink: OutputSink, *, on_exit: ExitNotice | None = None) -> list[str]:
        """Bind ``sink`` to ``host_id`` and replay output for its sessions.

        The binding replaces any earlier one for the same host ID; only a
        :meth:`disconnect` carrying the current ``sink`` can release it.
        """
        with self._lock:
            pending = self._pending.pop(host_id, None)
            self._bindings[host_id] = _Binding(sink=sink, on_exit=on_exit)
            finished = sorted(self._finished.pop(host_id, ()))
        if pending is not None:
            pending.timer.cancel()
            logger.info("Host %s reconnected within the grace window", host_id)

        attached: list[str] = []
        for session_id in [*self.owned_sessions(host_id), *finished]:
            try:
                replayed = self._bridge.flush_and_attach(session_id, sink, on_exit=on_exit)
            except SessionNotFound:
                continue
            logger.debug("Reattached session %s to host %s replayed=%s", session_id, host_id, replayed)
            attached.append(session_id)
        return attached

    def attach_session(self, host_id: str, session_id: str) -> bool:
        with self._lock:
            binding = self._bindings.get(host_id)
        if binding is None:
            return False
        try:
            self._bridge.flush_and_attach(session_id, binding.sink, on_exit=binding.on_exit)
        except SessionNotFound:
            return False
        with self._lock:
            self._finished.get(host_id, set()).discard(session_id)
        return True

    def disconnect(self, host_id: str, sink: OutputSink | None = None) -> None:
        """Start the grace window for ``host_id``.

        With ``sink`` given, nothing happens unless that sink is still the
        host's current binding, so a superseded connection closing late
        cannot detach its replacement.
        """
        with self._lock:
            binding = self._bindings.get(host_id)
            if binding is None:
                return
            if sink is not None and binding.sink is not sink:
                logger.debug("Ignoring disconnect from a superseded connection of host %s", host_id)
                return
            del self._bindings[host_id]
            self._generation += 1
            generation = self._generation
        for session_id in self.owned_sessions(host_id):
            self._bridge.detach(session_id)

        if self.grace_seconds <= 0:
            self._expire(host_id, generation)
            return
        timer = self._timer_factory(self.grace_seconds, lambda: self._expire(host_id, generation))
        with self._lock:
            self._pending[host_id] = _PendingExpiry(generation=generation, timer=timer)
        timer.start()
        logger.info("Host %s disconnected; disposing its sessions in %.1fs", host_id, self.grace_seconds)

    def dispose(self, session_id: str) -> bool:
        try:
            self._registry.remove_session(session_id)
        except SessionNotFound:
            return False
        return True

    def shutdown(self) -> None:
        with self._lock:
            pending = list(self._pending.values())
            finished = [session_id for ids in self._finished.values() for session_id in ids]
            self._pending.clear()
            self._bindings.clear()
            self._finished.clear()
        for entry in pending:
            entry.timer.cancel()
        for session_id in finished:
            self._bridge.close(session_id)
        self._registry.shutdown()

    def _expire(self, host_id: str, generation: int) -> None:
        with self._lock:
            if host_id in self._bindings:
                return
            pending = self._pending.get(host_id)
            if pending is not None:
                if pending.generation != generation:
                    return
                del self._pending[host_id]
            finished = self._finished.pop(host_id, set())
        error = HostDisconnectTimeout(f"Host {host_id} did not reconnect within {self.grace_seconds:.1f}s.")
        logger.warning("%s", error.message)
        for session_id in finished:
            self._bridge.close(session_id)
        disposed = [session_id for session_id in self.owned_sessions(host_id) if self.dispose(session_id)]
        logger.info(
            "Disposed %s orphaned sessions and %s finished sessions for host %s",
            len(disposed),
            len(finished),
            host_id,
        )

    def _on_session_event(self, event: SessionEvent) -> None:
        if event.kind != SessionEventKind.EXITED or event.session is None:
            return
        host_id = event.session.host_id
        with self._lock:
            owner_known = host_id in self._bindings or host_id in self._pending
            if owner_known:
                finished = self._finished.setdefault(host_id, set())
                for stale in [session_id for session_id in finished if not self._bridge.has_session(session_id)]:
                    finished.discard(stale)
                finished.add(event.session_id)
        if not owner_known:
            # Nobody can ever attach to it again.
            self._bridge.close(event.session_id)
