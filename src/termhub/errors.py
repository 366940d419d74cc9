"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    SPAWN_ERROR = 5
    SESSION_ERROR = 6
    VALIDATION_ERROR = 7
    UNSUPPORTED_PLATFORM = 8


@dataclass
class TermHubError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message

    @property
    def kind(self) -> str:
        return type(self).__name__


@dataclass
class SpawnError(TermHubError):
    """Shell could not be started; the session never reaches running."""

    code: ExitCode = ExitCode.SPAWN_ERROR


@dataclass
class ProfileNotFound(SpawnError):
    code: ExitCode = ExitCode.VALIDATION_ERROR


@dataclass
class ThemeNotFound(SpawnError):
    code: ExitCode = ExitCode.VALIDATION_ERROR


@dataclass
class SessionNotFound(TermHubError):
    code: ExitCode = ExitCode.SESSION_ERROR


@dataclass
class ProcessAlreadyTerminated(TermHubError):
    code: ExitCode = ExitCode.SESSION_ERROR


@dataclass
class WriteFailure(TermHubError):
    """Stdin pipe of a live process is broken."""

    code: ExitCode = ExitCode.RUNTIME_ERROR


@dataclass
class HostDisconnectTimeout(TermHubError):
    code: ExitCode = ExitCode.RUNTIME_ERROR


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
