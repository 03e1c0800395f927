# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""CLI commands for the Postforge server."""
from typing import Annotated

import typer
import uvicorn
from rich.console import Console

from postforge.server.config import ServerConfig


console = Console()

server_app = typer.Typer(
    name="server",
    help="Postforge API server commands.",
)


@server_app.callback(invoke_without_command=True)
def server(
    ctx: typer.Context,
    port: Annotated[
        int | None,
        typer.Option("--port", "-p", help="Port to listen on (default: from config/env)"),
    ] = None,
    bind_all: Annotated[
        bool,
        typer.Option(
            "--bind-all",
            help="Bind to all interfaces (0.0.0.0). WARNING: Exposes server to network.",
        ),
    ] = False,
    reload: Annotated[
        bool,
        typer.Option("--reload", help="Enable auto-reload for development"),
    ] = False,
) -> None:
    """Start the Postforge API server.

    By default, binds to localhost (127.0.0.1) only.
    Port and host can be configured via POSTFORGE_PORT and POSTFORGE_HOST env vars.
    """
    if ctx.invoked_subcommand is not None:
        return

    config = ServerConfig()

    # CLI flags override config
    effective_port = port if port is not None else config.port
    effective_host = "0.0.0.0" if bind_all else config.host

    if bind_all:
        console.print(
            "[yellow]Warning:[/yellow] Server accessible to all network clients. "
            "Only the cron endpoint is authenticated.",
            style="bold yellow",
        )

    console.print(f"Starting Postforge server on http://{effective_host}:{effective_port}")
    console.print(f"API docs: http://{effective_host}:{effective_port}/api/docs")

    try:
        uvicorn.run(
            "postforge.server.main:app",
            host=effective_host,
            port=effective_port,
            reload=reload,
            log_level=config.log_level.lower(),
        )
    except KeyboardInterrupt:
        console.print("\nServer stopped.")
