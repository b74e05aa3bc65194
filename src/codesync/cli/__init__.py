"""
codesync CLI: serve or pull a VS Code configuration.

The main Click group is defined here; every command lives in its own
module and is attached through a register function.

Entry point: codesync.cli:main
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from .. import __version__
from ._common import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="codesync")
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False),
              help="Settings file (default: ~/.config/codesync/config.yaml).")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], verbose: bool):
    """codesync: copy VS Code settings between machines on your LAN.

    Run 'codesync server' on the machine that has the settings you want,
    then 'codesync client <address>' on the one that should receive them.
    """
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config_path).expanduser() if config_path else None


# ---------------------------------------------------------------------------
# Register all commands from modular files
# ---------------------------------------------------------------------------

from .server import register_server_commands
from .client import register_client_commands
from .backup import register_backup_commands
from .status import register_status_commands

register_server_commands(main)
register_client_commands(main)
register_backup_commands(main)
register_status_commands(main)
