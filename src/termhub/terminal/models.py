"""Terminal session domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

DEFAULT_COLS = 80
DEFAULT_ROWS = 30

ANSI_SLOTS: tuple[str, ...] = (
    "black",
    "red",
    "green",
    "yellow",
    "blue",
    "magenta",
    "cyan",
    "white",
    "bright_black",
    "bright_red",
    "bright_green",
    "bright_yellow",
    "bright_blue",
    "bright_magenta",
    "bright_cyan",
    "bright_white",
)


class SessionStatus(str, Enum):
    CONNECTING = "connecting"
    RUNNING = "running"
    EXITED = "exited"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.EXITED, SessionStatus.FAILED)


class SplitOrientation(str, Enum):
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


@dataclass(frozen=True)
class TerminalProfile:
    """Named shell launch configuration.

    ``command`` may be empty, in which case the platform default shell is used.
    Font and cursor fields are rendering hints for the UI host only.
    """

    name: str
    command: str = ""
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    cwd: str = ""
    theme: str = "default"
    font_size: int = 14
    font_family: str = "Consolas, monospace"
    line_height: float = 1.0
    cursor_style: str = "block"
    cursor_blink: bool = True
    scrollback: int = 1000
    bell_style: str = "sound"
    copy_on_select: bool = False


@dataclass(frozen=True)
class TerminalTheme:
    name: str
    background: str
    foreground: str
    cursor: str
    selection: str
    black: str
    red: str
    green: str
    yellow: str
    blue: str
    magenta: str
    cyan: str
    white: str
    bright_black: str
    bright_red: str
    bright_green: str
    bright_yellow: str
    bright_blue: str
    bright_magenta: str
    bright_cyan: str
    bright_white: str

    def ansi_palette(self) -> tuple[str, ...]:
        return tuple(getattr(self, slot) for slot in ANSI_SLOTS)


@dataclass(frozen=True)
class CustomTheme(TerminalTheme):
    id: str = ""
    description: str = ""
    author: str = ""
    version: str = ""


@dataclass(frozen=True)
class SessionConfig:
    profile: str = ""
    theme: str = ""
    cwd: str = ""
    title: str = ""
    cols: int = 0
    rows: int = 0
    shell: str = ""
    env: dict[str, str] = field(default_factory=dict)
    host_id: str = ""


@dataclass(frozen=True)
class ExitStatus:
    code: int | None = None
    signal: int | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TerminalSession:
    id: str
    profile_name: str
    theme_name: str
    cwd: str = ""
    title: str = ""
    status: SessionStatus = SessionStatus.CONNECTING
    created_at: datetime = field(default_factory=_utcnow)
    last_active_at: datetime = field(default_factory=_utcnow)
    is_active: bool = False
    host_id: str = ""
    sequence: int = 0
    pid: int | None = None
    exit_code: int | None = None
    exit_signal: int | None = None
    failure_reason: str = ""

    def touch(self) -> None:
        self.last_active_at = _utcnow()


@dataclass
class SplitViewConfig:
    """One split node.

    ``sessions`` lists the members in display order; a member is either a
    session ID or the ID of a nested split view. ``sizes`` holds the matching
    relative ratios and always sums to 1.0.
    """

    id: str
    orientation: SplitOrientation
    sessions: list[str] = field(default_factory=list)
    sizes: list[float] = field(default_factory=list)
