"""
Settings for codesync: YAML on disk, validated by pydantic.

Location: $CODESYNC_CONFIG, else ~/.config/codesync/config.yaml.
Every key is optional:

    port: 8080
    bind: 0.0.0.0
    include_extensions: true
    user_dir: ~/some/other/Code/User
    extra_excludes: [History]
    timeout: 60
    grace_period: 5
    compresslevel: 6
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from . import CONFIG_FILE, DEFAULT_PORT
from .errors import ConfigError

logger = logging.getLogger("codesync.config")


class SyncSettings(BaseModel):
    """Runtime settings shared by the server and client roles.

    Attributes:
        port: TCP port of the sync endpoint.
        bind: Address the server listens on.
        include_extensions: Transfer ~/.vscode/extensions alongside User.
        user_dir: Override for the 'User' settings directory.
        extensions_dir: Override for the extensions directory.
        extra_excludes: Additional path components never transferred.
        timeout: Client HTTP timeout in seconds.
        grace_period: Seconds in-flight transfers get on server shutdown.
        compresslevel: Deflate level, 0-9.
    """

    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    bind: str = "0.0.0.0"
    include_extensions: bool = True
    user_dir: Optional[Path] = None
    extensions_dir: Optional[Path] = None
    extra_excludes: list[str] = Field(default_factory=list)
    timeout: float = Field(default=60.0, gt=0)
    grace_period: float = Field(default=5.0, ge=0)
    compresslevel: int = Field(default=6, ge=0, le=9)


def load_settings(path: Optional[Path] = None) -> SyncSettings:
    """Load settings from a YAML file.

    A missing file is not an error: defaults apply.

    Args:
        path: Settings file. Defaults to CODESYNC_CONFIG.

    Returns:
        SyncSettings: Validated settings.

    Raises:
        ConfigError: If the file is not valid YAML or holds bad values.
    """
    config_file = Path(path or CONFIG_FILE).expanduser()
    if not config_file.exists():
        logger.debug("No settings file at %s, using defaults", config_file)
        return SyncSettings()

    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read {config_file}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"{config_file} must contain a mapping")

    try:
        settings = SyncSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings in {config_file}: {exc}") from exc

    logger.info("Loaded settings from %s", config_file)
    return settings
