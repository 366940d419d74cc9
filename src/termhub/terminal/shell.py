"""Shell, invocation flag and working-directory resolution."""

from __future__ import annotations

import logging as py_logging
import os
import re
import shutil
import sys
from collections.abc import Mapping

from termhub.errors import SpawnError
from termhub.terminal.models import TerminalProfile

logger = py_logging.getLogger(__name__)

DEFAULT_POSIX_SHELL = "/bin/bash"
DEFAULT_WINDOWS_SHELL = "cmd.exe"

_POSIX_INTERACTIVE_SHELLS = {"bash", "zsh", "sh", "ksh", "dash", "fish"}
_POWERSHELLS = {"powershell", "pwsh"}


def is_windows(platform: str | None = None) -> bool:
    return (platform or sys.platform).startswith("win")


def shell_name(shell: str) -> str:
    name = re.split(r"[\\/]", shell.strip())[-1].lower()
    if name.endswith(".exe"):
        name = name[: -len(".exe")]
    return name


def resolve_shell(
    explicit: str = "",
    *,
    platform: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    if explicit.strip():
        return explicit.strip()
    env = os.environ if environ is None else environ
    if is_windows(platform):
        return env.get("COMSPEC", "").strip() or DEFAULT_WINDOWS_SHELL
    return env.get("SHELL", "").strip() or DEFAULT_POSIX_SHELL


def shell_flags(shell: str, *, platform: str | None = None) -> list[str]:
    name = shell_name(shell)
    if name in _POWERSHELLS:
        return ["-NoLogo"]
    if name == "cmd":
        return []
    if name in _POSIX_INTERACTIVE_SHELLS and not is_windows(platform):
        return ["-i"]
    if name in _POSIX_INTERACTIVE_SHELLS:
        # Git bash / MSYS on Windows only behaves as a terminal with a login shell.
        return ["--login", "-i"]
    return []


def build_shell_command(
    profile: TerminalProfile,
    *,
    shell_override: str = "",
    platform: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[str]:
    shell = resolve_shell(shell_override or profile.command, platform=platform, environ=environ)
    if profile.args and not shell_override:
        return [shell, *profile.args]
    return [shell, *shell_flags(shell, platform=platform)]


def locate_executable(program: str, *, environ: Mapping[str, str] | None = None) -> str:
    search_path = None if environ is None else environ.get("PATH")
    found = shutil.which(program, path=search_path)
    if found:
        return found
    if os.path.exists(program):
        if os.path.isdir(program):
            raise SpawnError(
                f"Shell path is a directory: {program}",
                hint="Point the profile at a shell executable.",
            )
        raise SpawnError(
            f"Permission denied: {program}",
            hint="Make the shell executable or choose another profile.",
        )
    raise SpawnError(
        f"Shell executable not found: {program}",
        hint="Install the shell or set an explicit shell override.",
    )


def resolve_working_directory(requested: str, *, strict: bool = False, fallback: str | None = None) -> str:
    if requested.strip():
        candidate = os.path.abspath(os.path.expanduser(requested.strip()))
        if os.path.isdir(candidate):
            return candidate
        if strict:
            raise SpawnError(
                f"Working directory does not exist: {requested}",
                hint="Create the directory or choose another working directory.",
            )
        logger.warning("Working directory %s is missing; using the host directory instead", requested)
    resolved = fallback or os.getcwd()
    if not os.path.isdir(resolved):
        raise SpawnError(
            f"Working directory does not exist: {resolved}",
            hint="Start the host from an existing directory.",
        )
    return resolved
