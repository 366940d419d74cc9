"""Terminal session multiplexer domain package."""

from .bridge import IOBridge, OutputBuffer
from .catalog import CatalogChange, ProfileThemeCatalog
from .coordinator import DisposalCoordinator
from .history import HistoryBuffer
from .models import (
    CustomTheme,
    ExitStatus,
    SessionConfig,
    SessionStatus,
    SplitOrientation,
    SplitViewConfig,
    TerminalProfile,
    TerminalSession,
    TerminalTheme,
)
from .process import ShellProcess, SpawnRequest
from .registry import SessionEvent, SessionEventKind, SessionRegistry
from .splits import SplitViewManager
from .supervisor import ProcessHandle, ProcessSupervisor

__all__ = [
    "CatalogChange",
    "CustomTheme",
    "DisposalCoordinator",
    "ExitStatus",
    "HistoryBuffer",
    "IOBridge",
    "OutputBuffer",
    "ProcessHandle",
    "ProcessSupervisor",
    "ProfileThemeCatalog",
    "SessionConfig",
    "SessionEvent",
    "SessionEventKind",
    "SessionRegistry",
    "SessionStatus",
    "ShellProcess",
    "SpawnRequest",
    "SplitOrientation",
    "SplitViewConfig",
    "SplitViewManager",
    "TerminalProfile",
    "TerminalSession",
    "TerminalTheme",
]
