"""In-memory profile, theme and custom-theme catalog."""

from __future__ import annotations

import logging as py_logging
import sys
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from termhub.errors import ExitCode, ProfileNotFound, TermHubError, ThemeNotFound
from termhub.terminal.models import CustomTheme, TerminalProfile, TerminalTheme

logger = py_logging.getLogger(__name__)

DEFAULT_PROFILE_NAME = "default"
DEFAULT_THEME_NAME = "default"


@dataclass(frozen=True)
class CatalogChange:
    kind: str
    action: str
    name: str


CatalogListener = Callable[[CatalogChange], None]


def default_profiles(platform: str | None = None) -> list[TerminalProfile]:
    windows = (platform or sys.platform).startswith("win")
    return [
        TerminalProfile(name=DEFAULT_PROFILE_NAME),
        TerminalProfile(
            name="powershell",
            command="powershell.exe" if windows else "pwsh",
            args=("-NoLogo",),
            font_family='Consolas, "Courier New", monospace',
        ),
        TerminalProfile(
            name="git-bash",
            command="C:\\Program Files\\Git\\bin\\bash.exe" if windows else "/bin/bash",
            args=("--login",),
            font_family='Consolas, "Courier New", monospace',
        ),
    ]


def default_themes() -> list[TerminalTheme]:
    return [
        TerminalTheme(
            name=DEFAULT_THEME_NAME,
            background="#1E1E1E",
            foreground="#D4D4D4",
            cursor="#FFFFFF",
            selection="#264F78",
            black="#000000",
            red="#CD3131",
            green="#0DBC79",
            yellow="#E5E510",
            blue="#2472C8",
            magenta="#BC3FBC",
            cyan="#11A8CD",
            white="#E5E5E5",
            bright_black="#666666",
            bright_red="#F14C4C",
            bright_green="#23D18B",
            bright_yellow="#F5F543",
            bright_blue="#3B8EEA",
            bright_magenta="#D670D6",
            bright_cyan="#29B8DB",
            bright_white="#E5E5E5",
        ),
        TerminalTheme(
            name="light",
            background="#ffffff",
            foreground="#000000",
            cursor="#000000",
            selection="#add6ff",
            black="#000000",
            red="#cd3131",
            green="#00bc00",
            yellow="#949800",
            blue="#0451a5",
            magenta="#bc05bc",
            cyan="#0598bc",
            white="#555555",
            bright_black="#666666",
            bright_red="#cd3131",
            bright_green="#14ce14",
            bright_yellow="#b5ba00",
            bright_blue="#0451a5",
            bright_magenta="#bc05bc",
            bright_cyan="#0598bc",
            bright_white="#a5a5a5",
        ),
    ]


class ProfileThemeCatalog:
    """Read-mostly registry of launch profiles and color themes.

    Registration is last-write-wins and publishes a :class:`CatalogChange`
    so sessions using a re-registered theme can be refreshed.
    """

    def __init__(
        self,
        *,
        profiles: Iterable[TerminalProfile] | None = None,
        themes: Iterable[TerminalTheme] | None = None,
        include_defaults: bool = True,
    ) -> None:
        self._lock = threading.RLock()
        self._profiles: dict[str, TerminalProfile] = {}
        self._themes: dict[str, TerminalTheme] = {}
        self._custom_themes: dict[str, CustomTheme] = {}
        self._listeners: list[CatalogListener] = []
        if include_defaults:
            for profile in default_profiles():
                self._profiles[profile.name] = profile
            for theme in default_themes():
                self._themes[theme.name] = theme
        for profile in profiles or ():
            self.register_profile(profile)
        for theme in themes or ():
            self.register_theme(theme)

    def subscribe(self, listener: CatalogListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def register_profile(self, profile: TerminalProfile) -> None:
        _require_name(profile.name, "Profile")
        with self._lock:
            self._profiles[profile.name] = profile
        self._publish(CatalogChange(kind="profile", action="registered", name=profile.name))

    def get_profile(self, name: str) -> TerminalProfile:
        profile = self.find_profile(name)
        if profile is None:
            raise ProfileNotFound(
                f"Profile not found: {name}",
                hint="Register the profile or choose an existing one.",
            )
        return profile

    def find_profile(self, name: str) -> TerminalProfile | None:
        with self._lock:
            return self._profiles.get(name)

    def list_profiles(self) -> list[TerminalProfile]:
        with self._lock:
            return list(self._profiles.values())

    def remove_profile(self, name: str) -> bool:
        with self._lock:
            removed = self._profiles.pop(name, None)
        if removed is None:
            return False
        self._publish(CatalogChange(kind="profile", action="removed", name=name))
        return True

    def register_theme(self, theme: TerminalTheme) -> None:
        _require_name(theme.name, "Theme")
        with self._lock:
            self._themes[theme.name] = theme
        self._publish(CatalogChange(kind="theme", action="registered", name=theme.name))

    def get_theme(self, name: str) -> TerminalTheme:
        """Resolve a built-in theme by name, falling back to custom theme IDs."""
        with self._lock:
            theme: TerminalTheme | None = self._themes.get(name) or self._custom_themes.get(name)
        if theme is None:
            raise ThemeNotFound(
                f"Theme not found: {name}",
                hint="Register the theme or choose an existing one.",
            )
        return theme

    def list_themes(self) -> list[TerminalTheme]:
        with self._lock:
            return list(self._themes.values())

    def remove_theme(self, name: str) -> bool:
        with self._lock:
            removed = self._themes.pop(name, None)
        if removed is None:
            return False
        self._publish(CatalogChange(kind="theme", action="removed", name=name))
        return True

    def register_custom_theme(self, theme: CustomTheme) -> None:
        _require_name(theme.id, "Custom theme id")
        with self._lock:
            self._custom_themes[theme.id] = theme
        self._publish(CatalogChange(kind="custom_theme", action="registered", name=theme.id))

    def get_custom_theme(self, theme_id: str) -> CustomTheme | None:
        with self._lock:
            return self._custom_themes.get(theme_id)

    def list_custom_themes(self) -> list[CustomTheme]:
        with self._lock:
            return list(self._custom_themes.values())

    def _publish(self, change: CatalogChange) -> None:
        logger.debug("catalog-change kind=%s action=%s name=%s", change.kind, change.action, change.name)
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                logger.exception("Catalog listener failed for %s %s", change.kind, change.name)


def _require_name(value: str, label: str) -> None:
    if not value.strip():
        raise TermHubError(
            f"{label} cannot be empty.",
            code=ExitCode.VALIDATION_ERROR,
            hint="Provide a non-empty identifier.",
        )
