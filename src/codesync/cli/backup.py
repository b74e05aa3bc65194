"""Backup listing: show the snapshots previous syncs left behind."""

from __future__ import annotations

import json

import click
from rich.table import Table

from ._common import console, fail, settings_from_context
from ..errors import CodeSyncError


def register_backup_commands(main: click.Group) -> None:
    """Register the backups command."""

    @main.command("backups")
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    @click.pass_context
    def backups_cmd(ctx: click.Context, json_out: bool):
        """List backups of the local settings, newest first.

        Each client sync renames the previous settings to
        <dir>_backup_<timestamp>. To go back, close VS Code, remove
        the live directory and rename a backup to its original name.
        """
        from ..backup import list_backups
        from ..paths import resolve_config_roots

        settings = settings_from_context(ctx)
        try:
            roots = resolve_config_roots(settings)
        except CodeSyncError as exc:
            fail(exc)

        found = [(root.label, snap) for root in roots for snap in list_backups(root.path)]

        if json_out:
            click.echo(json.dumps(
                [{"root": label, **snap.model_dump(mode="json")} for label, snap in found],
                indent=2,
            ))
            return

        if not found:
            console.print("\n[dim]No backups found.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Root", style="bold")
        table.add_column("Created", style="dim")
        table.add_column("Path", style="cyan")
        for label, snap in found:
            table.add_row(label, snap.created_at.strftime("%Y-%m-%d %H:%M:%S"), str(snap.path))

        console.print(f"\n[bold]{len(found)}[/] backup(s):\n")
        console.print(table)
        console.print()

    main.add_command(backups_cmd)
