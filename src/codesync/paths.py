"""
Platform path resolution: where VS Code keeps its settings.

    Windows: %APPDATA%\\Code\\User
    macOS:   ~/Library/Application Support/Code/User
    Linux:   $XDG_CONFIG_HOME/Code/User, else ~/.config/Code/User

Installed extensions live in ~/.vscode/extensions on every platform.
Nothing here touches the filesystem; resolution is a pure function of
the platform, the environment and the home directory.
"""

from __future__ import annotations

import os
import platform
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Optional

from .errors import ConfigNotFound, UnsupportedPlatform
from .models import EXTENSIONS_LABEL, USER_LABEL, ConfigRoot

if TYPE_CHECKING:
    from .config import SyncSettings


class Platform(str, Enum):
    """Host operating systems with a known settings layout."""

    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"

    @classmethod
    def from_identifier(cls, identifier: str) -> "Platform":
        """Map a platform.system() or sys.platform value to a Platform.

        Args:
            identifier: e.g. 'Windows', 'win32', 'Darwin', 'linux'.

        Raises:
            UnsupportedPlatform: For anything else.
        """
        key = identifier.strip().lower()
        if key in ("windows", "win32", "cygwin"):
            return cls.WINDOWS
        if key in ("darwin", "macos"):
            return cls.MACOS
        if key.startswith("linux"):
            return cls.LINUX
        raise UnsupportedPlatform(identifier)


def current_platform() -> Platform:
    """Platform of the running host."""
    return Platform.from_identifier(platform.system())


def _home(home: Optional[Path]) -> Path:
    if home is not None:
        return Path(home)
    try:
        return Path.home()
    except (KeyError, RuntimeError) as exc:
        raise ConfigNotFound(f"Cannot determine home directory: {exc}") from exc


def resolve_user_dir(
    plat: Optional[Platform | str] = None,
    environ: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return the VS Code 'User' settings directory for a platform.

    Args:
        plat: Target platform. Defaults to the host.
        environ: Environment to read APPDATA and XDG_CONFIG_HOME from.
            Defaults to os.environ.
        home: Home directory override.

    Returns:
        Path: Absolute path of the settings root.

    Raises:
        ConfigNotFound: APPDATA unset on Windows, or no home directory.
        UnsupportedPlatform: Unknown platform identifier.
    """
    if plat is None:
        plat = current_platform()
    elif not isinstance(plat, Platform):
        plat = Platform.from_identifier(plat)
    env = os.environ if environ is None else environ

    if plat is Platform.WINDOWS:
        appdata = env.get("APPDATA", "")
        if not appdata:
            raise ConfigNotFound("APPDATA is not set")
        return Path(appdata) / "Code" / "User"
    if plat is Platform.MACOS:
        return _home(home) / "Library" / "Application Support" / "Code" / "User"
    xdg = env.get("XDG_CONFIG_HOME", "")
    # a relative XDG_CONFIG_HOME is invalid and ignored
    if xdg and Path(xdg).is_absolute():
        return Path(xdg) / "Code" / "User"
    return _home(home) / ".config" / "Code" / "User"


def resolve_extensions_dir(home: Optional[Path] = None) -> Path:
    """Return the directory holding installed VS Code extensions."""
    return _home(home) / ".vscode" / "extensions"


def resolve_config_roots(settings: Optional["SyncSettings"] = None) -> list[ConfigRoot]:
    """Resolve every root that takes part in a sync on this host.

    Explicit directories in the settings win over the platform defaults.

    Args:
        settings: Loaded settings. Defaults to built-in defaults.

    Returns:
        list[ConfigRoot]: 'User' first, then 'extensions' if enabled.
    """
    user_dir = settings.user_dir if settings else None
    roots = [
        ConfigRoot(
            label=USER_LABEL,
            path=Path(user_dir).expanduser() if user_dir else resolve_user_dir(),
        )
    ]
    if settings is None or settings.include_extensions:
        ext_dir = settings.extensions_dir if settings else None
        roots.append(
            ConfigRoot(
                label=EXTENSIONS_LABEL,
                path=Path(ext_dir).expanduser() if ext_dir else resolve_extensions_dir(),
            )
        )
    return roots
