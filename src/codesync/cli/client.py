"""Client command: replace the local settings with a server's."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel

from ._common import console, fail, settings_from_context
from ..errors import BackupFailed, CodeSyncError, DecodeIOError


def register_client_commands(main: click.Group) -> None:
    """Register the client command."""

    @main.command("client")
    @click.argument("address")
    @click.option("--port", "-p", type=int, default=None, help="Server port (default: 8080).")
    @click.option("--timeout", type=float, default=None, help="HTTP timeout in seconds.")
    @click.option("--user-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
                  help="Write into this directory instead of the detected User settings.")
    @click.option("--extensions-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
                  help="Write extensions here instead of ~/.vscode/extensions.")
    @click.pass_context
    def client_cmd(
        ctx: click.Context,
        address: str,
        port: Optional[int],
        timeout: Optional[float],
        user_dir: Optional[Path],
        extensions_dir: Optional[Path],
    ):
        """Pull settings from the codesync server at ADDRESS.

        The current settings directory is renamed to
        <dir>_backup_<timestamp> first; nothing is overwritten if that
        rename fails.

        Examples:

            codesync client 192.168.1.50

            codesync client 192.168.1.50:9000
        """
        from ..client import run_sync
        from ..paths import resolve_config_roots

        settings = settings_from_context(
            ctx,
            port=port,
            timeout=timeout,
            user_dir=user_dir,
            extensions_dir=extensions_dir,
        )
        # The server decides which roots travel; every local one must be resolvable.
        settings = settings.model_copy(update={"include_extensions": True})

        try:
            roots = resolve_config_roots(settings)
            console.print(f"\n[cyan]Syncing from {address}...[/]")
            result = run_sync(address, roots, port=settings.port, timeout=settings.timeout)
        except BackupFailed as exc:
            fail(exc, "Nothing was changed. Close VS Code and try again.")
        except DecodeIOError as exc:
            fail(exc, "Extraction stopped part way. Your previous settings are in the _backup_ directory.")
        except CodeSyncError as exc:
            fail(exc)

        backups = "\n".join(f"Backup: [cyan]{s.path}[/]" for s in result.snapshots) or "Backup: none needed"
        console.print(Panel(
            f"[bold green]Sync complete[/]\n"
            f"Entries: {result.entries_written}\n"
            f"Received: {result.archive_size / 1024:.1f} KB\n"
            f"{backups}\n\n"
            f"Restart VS Code to pick up the new settings.",
            title="codesync",
            border_style="green",
        ))

    main.add_command(client_cmd)
