"""Shared helpers for the CLI command modules.

Provides the Rich console, logging setup, settings loading and the
single place where core errors turn into an exit status.
"""

from __future__ import annotations

import logging
import sys
from typing import NoReturn, Optional

import click
from rich.console import Console

from ..config import SyncSettings, load_settings
from ..errors import CodeSyncError

console = Console()
logger = logging.getLogger("codesync.cli")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging for a CLI run."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        force=True,
    )


def settings_from_context(ctx: click.Context, **overrides) -> SyncSettings:
    """Load settings and apply command-line overrides.

    Options left at None keep the file (or default) value.
    """
    obj = ctx.find_root().obj or {}
    try:
        settings = load_settings(obj.get("config_path"))
    except CodeSyncError as exc:
        fail(exc)
    updates = {k: v for k, v in overrides.items() if v is not None}
    return settings.model_copy(update=updates) if updates else settings


def fail(exc: CodeSyncError, hint: Optional[str] = None) -> NoReturn:
    """Print a core failure and exit with status 1."""
    logger.debug("Command failed", exc_info=exc)
    console.print(f"[bold red]Error:[/] {exc}")
    if hint:
        console.print(f"[yellow]{hint}[/]")
    sys.exit(1)
