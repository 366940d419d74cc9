"""Split layout bookkeeping over session IDs."""

from __future__ import annotations

import logging as py_logging
import math
import threading
import uuid
from collections.abc import Callable, Sequence
from dataclasses import replace

from termhub.errors import ExitCode, SessionNotFound, TermHubError
from termhub.terminal.models import SessionConfig, SplitOrientation, SplitViewConfig, TerminalSession
from termhub.terminal.registry import SessionEvent, SessionEventKind, SessionRegistry

logger = py_logging.getLogger(__name__)

SplitListener = Callable[[str, SplitViewConfig | None], None]


def normalize_sizes(sizes: Sequence[float]) -> list[float]:
    if not sizes:
        return []
    if any(not math.isfinite(value) or value <= 0 for value in sizes):
        raise TermHubError(
            f"Invalid split sizes: {list(sizes)}",
            code=ExitCode.VALIDATION_ERROR,
            hint="Use positive, finite size ratios.",
        )
    total = float(sum(sizes))
    normalized = [value / total for value in sizes]
    # Fold rounding error into the last slot so the ratios sum to exactly 1.0.
    normalized[-1] = 1.0 - sum(normalized[:-1])
    return normalized


def _coerce_orientation(value: SplitOrientation | str) -> SplitOrientation:
    try:
        return SplitOrientation(str(getattr(value, "value", value)).strip().lower())
    except ValueError as exc:
        raise TermHubError(
            f"Unsupported split direction: {value}",
            code=ExitCode.VALIDATION_ERROR,
            hint="Use horizontal or vertical.",
        ) from exc


class SplitViewManager:
    """Tree of split views. Views reference sessions but never own them.

    Each member (session or nested view) belongs to at most one view. When a
    referenced session is removed from the registry its slot disappears, the
    sibling ratios are renormalized, and single-member views collapse.
    """

    def __init__(self, registry: SessionRegistry, *, view_id_factory: Callable[[], str] | None = None) -> None:
        self._registry = registry
        self._view_id_factory = view_id_factory or (lambda: f"split-{uuid.uuid4().hex[:12]}")
        self._lock = threading.RLock()
        self._views: dict[str, SplitViewConfig] = {}
        self._parent: dict[str, str] = {}
        self._listeners: list[SplitListener] = []
        registry.subscribe(self._on_session_event)

    def subscribe(self, listener: SplitListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def create_split(
        self,
        parent_id: str,
        direction: SplitOrientation | str,
        *,
        config: SessionConfig | None = None,
    ) -> TerminalSession:
        orientation = _coerce_orientation(direction)
        parent = self._registry.get_session(parent_id)
        if parent is None:
            raise SessionNotFound(
                f"Parent session not found: {parent_id}",
                hint="Split an existing terminal session.",
            )
        session = self._registry.create_session(
            config
            or SessionConfig(
                profile=parent.profile_name,
                theme=parent.theme_name,
                cwd=parent.cwd,
                host_id=parent.host_id,
            )
        )
        with self._lock:
            self._insert(parent_id, session.id, orientation)
        # Registry events take the registry lock first, so membership is re-checked
        # after the insert rather than while holding the split lock.
        for member_id in (parent_id, session.id):
            if self._registry.get_session(member_id) is None:
                logger.info("Session %s removed during split; pruning layout", member_id)
                self._prune(member_id)
        return session

    def get_split_view(self, view_id: str) -> SplitViewConfig | None:
        with self._lock:
            view = self._views.get(view_id)
            return _copy(view) if view is not None else None

    def list_split_views(self) -> list[SplitViewConfig]:
        with self._lock:
            return [_copy(view) for view in self._views.values()]

    def find_split_view(self, member_id: str) -> SplitViewConfig | None:
        with self._lock:
            view_id = self._parent.get(member_id)
            return _copy(self._views[view_id]) if view_id is not None else None

    def update_split_view(
        self,
        view_id: str,
        *,
        sizes: Sequence[float] | None = None,
        orientation: SplitOrientation | str | None = None,
    ) -> SplitViewConfig:
        with self._lock:
            view = self._must_get(view_id)
            if sizes is not None:
                if len(sizes) != len(view.sessions):
                    raise TermHubError(
                        f"Expected {len(view.sessions)} sizes, got {len(sizes)}",
                        code=ExitCode.VALIDATION_ERROR,
                        hint="Provide one ratio per split member.",
                    )
                view.sizes = normalize_sizes(sizes)
            if orientation is not None:
                view.orientation = _coerce_orientation(orientation)
            updated = _copy(view)
        self._publish(view_id, updated)
        return updated

    def remove_split_view(self, view_id: str) -> bool:
        """Drop a view and its nested views; the sessions themselves keep running."""
        with self._lock:
            if view_id not in self._views:
                return False
            removed = self._drop_subtree(view_id)
            parent_id = self._parent.pop(view_id, None)
            if parent_id is not None:
                self._remove_member(parent_id, view_id)
        for dropped in removed:
            self._publish(dropped, None)
        return True

    def _insert(self, parent_id: str, new_id: str, orientation: SplitOrientation) -> None:
        container_id = self._parent.get(parent_id)
        if container_id is None:
            view = SplitViewConfig(
                id=self._view_id_factory(),
                orientation=orientation,
                sessions=[parent_id, new_id],
                sizes=[0.5, 0.5],
            )
            self._views[view.id] = view
            self._parent[parent_id] = view.id
            self._parent[new_id] = view.id
            self._publish(view.id, _copy(view))
            return

        container = self._views[container_id]
        index = container.sessions.index(parent_id)
        if container.orientation == orientation:
            half = container.sizes[index] / 2
            container.sessions.insert(index + 1, new_id)
            container.sizes[index] = half
            container.sizes.insert(index + 1, half)
            container.sizes = normalize_sizes(container.sizes)
            self._parent[new_id] = container_id
            self._publish(container_id, _copy(container))
            return

        nested = SplitViewConfig(
            id=self._view_id_factory(),
            orientation=orientation,
            sessions=[parent_id, new_id],
            sizes=[0.5, 0.5],
        )
        self._views[nested.id] = nested
        container.sessions[index] = nested.id
        self._parent[nested.id] = container_id
        self._parent[parent_id] = nested.id
        self._parent[new_id] = nested.id
        self._publish(nested.id, _copy(nested))
        self._publish(container_id, _copy(container))

    def _remove_member(self, view_id: str, member_id: str) -> None:
        view = self._views[view_id]
        index = view.sessions.index(member_id)
        del view.sessions[index]
        del view.sizes[index]
        self._parent.pop(member_id, None)

        if len(view.sessions) >= 2:
            view.sizes = normalize_sizes(view.sizes)
            self._publish(view_id, _copy(view))
            return

        # Collapse: a view with a single member is replaced by that member.
        del self._views[view_id]
        grandparent_id = self._parent.pop(view_id, None)
        survivor = view.sessions[0] if view.sessions else None
        if survivor is not None:
            self._parent.pop(survivor, None)
        if grandparent_id is not None:
            grandparent = self._views[grandparent_id]
            slot = grandparent.sessions.index(view_id)
            if survivor is None:
                self._publish(view_id, None)
                self._remove_member(grandparent_id, view_id)
                return
            grandparent.sessions[slot] = survivor
            self._parent[survivor] = grandparent_id
            self._publish(grandparent_id, _copy(grandparent))
        self._publish(view_id, None)

    def _drop_subtree(self, view_id: str) -> list[str]:
        view = self._views.pop(view_id)
        dropped = [view_id]
        for member in view.sessions:
            self._parent.pop(member, None)
            if member in self._views:
                dropped.extend(self._drop_subtree(member))
        return dropped

    def _on_session_event(self, event: SessionEvent) -> None:
        if event.kind == SessionEventKind.REMOVED:
            self._prune(event.session_id)

    def _prune(self, session_id: str) -> None:
        with self._lock:
            view_id = self._parent.get(session_id)
            if view_id is None:
                return
            logger.debug("Pruning session %s from split view %s", session_id, view_id)
            self._remove_member(view_id, session_id)

    def _must_get(self, view_id: str) -> SplitViewConfig:
        view = self._views.get(view_id)
        if view is None:
            raise TermHubError(
                f"Split view not found: {view_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Select an existing split view.",
            )
        return view

    def _publish(self, view_id: str, view: SplitViewConfig | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(view_id, view)
            except Exception:
                logger.exception("Split listener failed for %s", view_id)


def _copy(view: SplitViewConfig) -> SplitViewConfig:
    return replace(view, sessions=list(view.sessions), sizes=list(view.sizes))
