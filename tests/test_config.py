"""Config loading and sanitizing tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from termhub.config import (
    DEFAULT_CONFIG_PATH,
    SHELL_ENV,
    AppConfig,
    _normalize_profiles,
    build_profiles,
    get_config_path,
    load_config,
)
from termhub.terminal.bridge import DEFAULT_BUFFER_LIMIT
from termhub.terminal.coordinator import DEFAULT_GRACE_SECONDS


@pytest.fixture(autouse=True)
def _no_shell_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(SHELL_ENV, raising=False)


def test_missing_config_returns_defaults(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "missing.toml")

    assert cfg.default_profile == "default"
    assert cfg.backend == "pty"
    assert cfg.output_buffer_bytes == DEFAULT_BUFFER_LIMIT
    assert cfg.reconnect_grace_seconds == DEFAULT_GRACE_SECONDS
    assert cfg.profiles == {}


def test_config_path_defaults_to_xdg_location(tmp_path: Path) -> None:
    assert get_config_path() == DEFAULT_CONFIG_PATH
    assert get_config_path(tmp_path / "x.toml") == tmp_path / "x.toml"


def test_load_config_reads_toml_values(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        "\n".join(
            [
                'default_theme = "light"',
                'backend = "pipe"',
                "default_cols = 132",
                "default_rows = 43",
                "output_buffer_bytes = 8192",
                "reconnect_grace_seconds = 1.5",
                "history_size = 10",
                "strict_cwd = true",
                "",
                "[profiles.py]",
                'command = "python3"',
                'args = ["-q"]',
                'env = { PYTHONUNBUFFERED = "1" }',
                "",
            ]
        ),
        encoding="utf-8",
    )

    cfg = load_config(path)

    assert cfg.default_theme == "light"
    assert cfg.backend == "pipe"
    assert (cfg.default_cols, cfg.default_rows) == (132, 43)
    assert cfg.output_buffer_bytes == 8192
    assert cfg.reconnect_grace_seconds == 1.5
    assert cfg.history_size == 10
    assert cfg.strict_cwd is True
    assert cfg.profiles == {"py": {"command": "python3", "args": ["-q"], "env": {"PYTHONUNBUFFERED": "1"}}}


def test_invalid_values_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        "\n".join(
            [
                'backend = "conpty"',
                "default_cols = true",
                "default_rows = -4",
                "output_buffer_bytes = 100",
                "reconnect_grace_seconds = -1",
                'strict_cwd = "yes"',
                'default_profile = "   "',
                'profiles = "not-a-table"',
                "",
            ]
        ),
        encoding="utf-8",
    )

    cfg = load_config(path)

    assert cfg == AppConfig()


def test_broken_toml_returns_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("backend = [unterminated\n", encoding="utf-8")

    assert load_config(path) == AppConfig()


def test_shell_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.toml"
    path.write_text('shell = "/bin/bash"\n', encoding="utf-8")

    assert load_config(path).shell == "/bin/bash"
    monkeypatch.setenv(SHELL_ENV, " /usr/bin/fish ")
    assert load_config(path).shell == "/usr/bin/fish"


def test_assignment_is_validated() -> None:
    cfg = AppConfig()

    with pytest.raises(ValidationError):
        cfg.backend = "conpty"  # type: ignore[assignment]
    with pytest.raises(ValidationError):
        cfg.output_buffer_bytes = 10
    with pytest.raises(ValidationError):
        cfg.default_theme = " "


def test_normalize_profiles_drops_malformed_entries() -> None:
    raw = {
        "ok": {"command": " zsh ", "args": ["-l", 3], "env": {"A": "1", "B": 2}, "theme": " light "},
        "": {"command": "sh"},
        "bad": "sh",
        7: {"command": "sh"},
    }

    assert _normalize_profiles(raw) == {
        "ok": {"command": "zsh", "args": ["-l"], "env": {"A": "1"}, "theme": "light"},
    }
    assert _normalize_profiles(["sh"]) == {}


def test_build_profiles_sorts_and_applies_default_theme() -> None:
    cfg = AppConfig(
        default_theme="light",
        profiles={"zsh": {"command": "zsh"}, "bash": {"command": "bash", "args": ["-l"], "theme": "default"}},
    )

    profiles = build_profiles(cfg)

    assert [profile.name for profile in profiles] == ["bash", "zsh"]
    assert profiles[0].args == ("-l",)
    assert profiles[0].theme == "default"
    assert profiles[1].theme == "light"
