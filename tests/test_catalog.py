from __future__ import annotations

import pytest

from termhub.errors import ProfileNotFound, TermHubError, ThemeNotFound
from termhub.terminal.catalog import (
    CatalogChange,
    ProfileThemeCatalog,
    default_profiles,
    default_themes,
)
from termhub.terminal.models import CustomTheme, TerminalProfile


def _custom_theme(theme_id: str) -> CustomTheme:
    base = default_themes()[1]
    fields = {slot: getattr(base, slot) for slot in base.__dataclass_fields__}
    fields.update(name="Solar", id=theme_id, author="me", version="1.0")
    return CustomTheme(**fields)


def test_catalog_ships_builtin_profiles_and_themes() -> None:
    catalog = ProfileThemeCatalog()

    assert [profile.name for profile in catalog.list_profiles()] == ["default", "powershell", "git-bash"]
    assert [theme.name for theme in catalog.list_themes()] == ["default", "light"]
    assert catalog.get_theme("default").background == "#1E1E1E"


def test_default_profiles_follow_platform() -> None:
    windows = {profile.name: profile for profile in default_profiles("win32")}
    posix = {profile.name: profile for profile in default_profiles("linux")}

    assert windows["powershell"].command == "powershell.exe"
    assert posix["powershell"].command == "pwsh"
    assert posix["git-bash"].command == "/bin/bash"
    assert windows["default"].command == ""


def test_catalog_without_defaults_is_empty() -> None:
    catalog = ProfileThemeCatalog(include_defaults=False)

    assert catalog.list_profiles() == []
    assert catalog.list_themes() == []


def test_unknown_profile_and_theme_raise_typed_errors() -> None:
    catalog = ProfileThemeCatalog()

    with pytest.raises(ProfileNotFound):
        catalog.get_profile("nope")
    with pytest.raises(ThemeNotFound):
        catalog.get_theme("nope")
    assert catalog.find_profile("nope") is None


def test_register_overwrites_and_notifies() -> None:
    catalog = ProfileThemeCatalog()
    changes: list[CatalogChange] = []
    catalog.subscribe(changes.append)

    catalog.register_profile(TerminalProfile(name="default", command="/bin/zsh"))
    catalog.register_theme(default_themes()[0])

    assert catalog.get_profile("default").command == "/bin/zsh"
    assert changes == [
        CatalogChange(kind="profile", action="registered", name="default"),
        CatalogChange(kind="theme", action="registered", name="default"),
    ]


def test_remove_profile_and_theme() -> None:
    catalog = ProfileThemeCatalog()
    changes: list[CatalogChange] = []
    unsubscribe = catalog.subscribe(changes.append)

    assert catalog.remove_profile("powershell") is True
    assert catalog.remove_profile("powershell") is False
    assert catalog.remove_theme("light") is True
    unsubscribe()
    catalog.remove_theme("default")

    assert [change.action for change in changes] == ["removed", "removed"]
    assert catalog.find_profile("powershell") is None


def test_custom_themes_resolve_by_id() -> None:
    catalog = ProfileThemeCatalog()
    custom = _custom_theme("solarized")

    catalog.register_custom_theme(custom)

    assert catalog.get_custom_theme("solarized") == custom
    assert catalog.get_theme("solarized") == custom
    assert catalog.list_custom_themes() == [custom]
    assert catalog.get_custom_theme("missing") is None


def test_registration_requires_names() -> None:
    catalog = ProfileThemeCatalog()

    with pytest.raises(TermHubError):
        catalog.register_profile(TerminalProfile(name=" "))
    with pytest.raises(TermHubError):
        catalog.register_custom_theme(_custom_theme(""))


def test_listener_failure_is_isolated() -> None:
    catalog = ProfileThemeCatalog()
    seen: list[str] = []

    def broken(_change: CatalogChange) -> None:
        raise RuntimeError("listener bug")

    catalog.subscribe(broken)
    catalog.subscribe(lambda change: seen.append(change.name))
    catalog.register_profile(TerminalProfile(name="fish", command="fish"))

    assert seen == ["fish"]
