from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from convex_hooks.cli._common import RootOption, load_settings_or_exit

serve_app = typer.Typer(help="Start servers.")
console = Console(stderr=True)


@serve_app.command("mcp")
def mcp(
    root: RootOption = Path("."),
    transport: Annotated[str, typer.Option(help="MCP transport (stdio or sse).")] = "stdio",
) -> None:
    """Start the MCP server for advisory check and deployment lookups."""
    from convex_hooks.core.dispatch import create_dispatcher
    from convex_hooks.mcp.server import create_mcp_server

    settings = load_settings_or_exit(root)
    dispatcher = create_dispatcher(root, settings, with_codegen=False)
    server = create_mcp_server(dispatcher)
    console.print(f"[green]Starting MCP server (transport: {transport})[/green]")
    server.run(transport=transport)  # type: ignore[arg-type]
