"""XDG config loading."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing_extensions import TypedDict

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from termhub.terminal.bridge import DEFAULT_BUFFER_LIMIT
from termhub.terminal.catalog import DEFAULT_PROFILE_NAME, DEFAULT_THEME_NAME
from termhub.terminal.coordinator import DEFAULT_GRACE_SECONDS
from termhub.terminal.history import DEFAULT_HISTORY_SIZE
from termhub.terminal.models import DEFAULT_COLS, DEFAULT_ROWS, TerminalProfile

DEFAULT_CONFIG_PATH = Path("~/.config/termhub/config.toml").expanduser()
DEFAULT_BACKEND: Literal["pty", "pipe"] = "pty"
MIN_BUFFER_BYTES = 1024
SHELL_ENV = "TERMHUB_SHELL"

_VALID_BACKENDS = {"pty", "pipe"}


class ProfileConfig(TypedDict, total=False):
    command: str
    args: list[str]
    env: dict[str, str]
    cwd: str
    theme: str


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    default_profile: str = DEFAULT_PROFILE_NAME
    default_theme: str = DEFAULT_THEME_NAME
    shell: str = ""
    backend: Literal["pty", "pipe"] = DEFAULT_BACKEND
    default_cols: int = Field(default=DEFAULT_COLS, ge=1)
    default_rows: int = Field(default=DEFAULT_ROWS, ge=1)
    output_buffer_bytes: int = Field(default=DEFAULT_BUFFER_LIMIT, ge=MIN_BUFFER_BYTES)
    reconnect_grace_seconds: float = Field(default=DEFAULT_GRACE_SECONDS, ge=0)
    history_size: int = Field(default=DEFAULT_HISTORY_SIZE, ge=1)
    strict_cwd: bool = False
    profiles: dict[str, ProfileConfig] = Field(default_factory=dict)

    @field_validator("backend")
    @classmethod
    def _validate_backend(cls, value: str) -> str:
        if value not in _VALID_BACKENDS:
            raise ValueError(f"Invalid backend: {value}")
        return value

    @field_validator("default_profile", "default_theme")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Name cannot be empty")
        return value.strip()


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _positive_int(value: object, minimum: int = 1) -> int | None:
    # bool is an int subclass; `default_cols = true` must not become 1.
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        return None
    return value


def _normalize_profiles(value: object) -> dict[str, ProfileConfig]:
    if not isinstance(value, dict):
        return {}
    normalized: dict[str, ProfileConfig] = {}
    for name, payload in value.items():
        if not isinstance(name, str) or not name.strip() or not isinstance(payload, dict):
            continue
        profile: ProfileConfig = {}
        command = payload.get("command")
        if isinstance(command, str):
            profile["command"] = command.strip()
        args = payload.get("args")
        if isinstance(args, list):
            profile["args"] = [item for item in args if isinstance(item, str)]
        env = payload.get("env")
        if isinstance(env, dict):
            profile["env"] = {
                key: item for key, item in env.items() if isinstance(key, str) and isinstance(item, str)
            }
        cwd = payload.get("cwd")
        if isinstance(cwd, str):
            profile["cwd"] = cwd
        theme = payload.get("theme")
        if isinstance(theme, str) and theme.strip():
            profile["theme"] = theme.strip()
        normalized[name.strip()] = profile
    return normalized


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    for key in ("default_profile", "default_theme"):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            setattr(cfg, key, value)

    shell = raw.get("shell", cfg.shell)
    if isinstance(shell, str):
        cfg.shell = shell.strip()
    env_shell = os.getenv(SHELL_ENV, "").strip()
    if env_shell:
        cfg.shell = env_shell

    backend = raw.get("backend", cfg.backend)
    if isinstance(backend, str) and backend in _VALID_BACKENDS:
        cfg.backend = cast(Literal["pty", "pipe"], backend)

    default_cols = _positive_int(raw.get("default_cols"))
    if default_cols is not None:
        cfg.default_cols = default_cols

    default_rows = _positive_int(raw.get("default_rows"))
    if default_rows is not None:
        cfg.default_rows = default_rows

    buffer_bytes = _positive_int(raw.get("output_buffer_bytes"), MIN_BUFFER_BYTES)
    if buffer_bytes is not None:
        cfg.output_buffer_bytes = buffer_bytes

    grace = raw.get("reconnect_grace_seconds")
    if isinstance(grace, (int, float)) and not isinstance(grace, bool) and grace >= 0:
        cfg.reconnect_grace_seconds = float(grace)

    history_size = _positive_int(raw.get("history_size"))
    if history_size is not None:
        cfg.history_size = history_size

    strict_cwd = raw.get("strict_cwd", cfg.strict_cwd)
    if isinstance(strict_cwd, bool):
        cfg.strict_cwd = strict_cwd

    cfg.profiles = _normalize_profiles(raw.get("profiles", {}))
    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _sanitize({})
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _sanitize({})
    if not isinstance(raw, dict):
        return _sanitize({})
    return _sanitize(raw)


def build_profiles(config: AppConfig) -> list[TerminalProfile]:
    profiles: list[TerminalProfile] = []
    for name, payload in sorted(config.profiles.items()):
        profiles.append(
            TerminalProfile(
                name=name,
                command=payload.get("command", ""),
                args=tuple(payload.get("args", [])),
                env=dict(payload.get("env", {})),
                cwd=payload.get("cwd", ""),
                theme=payload.get("theme", config.default_theme),
            )
        )
    return profiles
