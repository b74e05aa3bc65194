"""Server command: stream this machine's settings to clients."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel

from ._common import console, fail, logger, settings_from_context
from ..errors import CodeSyncError


def register_server_commands(main: click.Group) -> None:
    """Register the server command."""

    @main.command("server")
    @click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: 8080).")
    @click.option("--bind", default=None, help="Address to listen on (default: 0.0.0.0).")
    @click.option("--user-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
                  help="Serve this directory instead of the detected User settings.")
    @click.option("--no-extensions", is_flag=True, help="Do not send ~/.vscode/extensions.")
    @click.pass_context
    def server_cmd(
        ctx: click.Context,
        port: Optional[int],
        bind: Optional[str],
        user_dir: Optional[Path],
        no_extensions: bool,
    ):
        """Serve the local VS Code settings at http://<this-host>:<port>/sync.

        Runs until Ctrl+C or SIGTERM. Transfers in progress get a few
        seconds to finish before the server exits.

        Examples:

            codesync server

            codesync server --port 9000 --no-extensions
        """
        from ..filters import EntryFilter
        from ..netinfo import detect_lan_ip
        from ..paths import resolve_config_roots
        from ..server import SyncServer

        settings = settings_from_context(
            ctx,
            port=port,
            bind=bind,
            user_dir=user_dir,
            include_extensions=False if no_extensions else None,
        )

        try:
            roots = resolve_config_roots(settings)
            srv = SyncServer(
                roots,
                entry_filter=EntryFilter(extra_excludes=settings.extra_excludes),
                host=settings.bind,
                port=settings.port,
                grace_period=settings.grace_period,
                compresslevel=settings.compresslevel,
            )
        except CodeSyncError as exc:
            fail(exc)

        try:
            srv.start()
        except OSError as exc:
            console.print(f"[bold red]Cannot listen on {settings.bind}:{settings.port}:[/] {exc}")
            raise SystemExit(1)

        _, bound_port = srv.server_address
        lan_ip = detect_lan_ip()
        if lan_ip is None:
            logger.warning("No LAN address found")
            lan_ip = settings.bind

        served = "\n".join(f"  {r.label}: [cyan]{r.path}[/]" for r in srv.roots)
        console.print(Panel(
            f"[bold green]Server running[/]\n"
            f"{served}\n\n"
            f"On the other machine run:\n"
            f"  [bold]codesync client {lan_ip}:{bound_port}[/]",
            title="codesync",
            border_style="green",
        ))
        console.print("[dim]Waiting for connections (Ctrl+C to stop)...[/]")

        srv.install_signal_handlers()
        srv.run_forever()
        console.print("[green]Server stopped.[/]")

    main.add_command(server_cmd)
