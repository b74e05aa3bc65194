"""Paths command: show where codesync reads and writes on this host."""

from __future__ import annotations

import click
from rich.table import Table

from ._common import console, fail, settings_from_context
from ..errors import CodeSyncError


def register_status_commands(main: click.Group) -> None:
    """Register the paths command."""

    @main.command("paths")
    @click.pass_context
    def paths_cmd(ctx: click.Context):
        """Show the resolved settings directories for this machine."""
        from ..paths import current_platform, resolve_config_roots

        settings = settings_from_context(ctx)
        try:
            plat = current_platform()
            roots = resolve_config_roots(settings)
        except CodeSyncError as exc:
            fail(exc)

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Root", style="bold")
        table.add_column("Path", style="cyan")
        table.add_column("Status")
        for root in roots:
            state = "[green]present[/]" if root.path.is_dir() else "[yellow]missing[/]"
            table.add_row(root.label, str(root.path), state)

        console.print(f"\nPlatform: [bold]{plat.value}[/]\n")
        console.print(table)
        console.print()

    main.add_command(paths_cmd)
