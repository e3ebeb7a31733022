"""Commands that talk to the codegen tool and the deployment."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from convex_hooks.cli._common import RootOption, console, load_settings_or_exit
from convex_hooks.core.codegen import SubprocessCommandRunner
from convex_hooks.core.snapshot import ConvexCliFetcher, DeploymentSnapshotCache
from convex_hooks.errors import ConfigurationMissing, DeploymentUnavailable
from convex_hooks.models import DeploymentSnapshot


def codegen(root: RootOption = Path(".")) -> None:
    """Run the codegen command once."""
    settings = load_settings_or_exit(root)
    runner = SubprocessCommandRunner(
        settings.codegen_command, cwd=root.resolve(), timeout=settings.command_timeout_seconds
    )
    console.print(f"Running {' '.join(settings.codegen_command)}...")
    result = asyncio.run(runner.run())
    if result.ok:
        console.print("[green]Codegen succeeded.[/green]")
        return
    console.print(result.output.rstrip(), markup=False, highlight=False)
    console.print("[red]Codegen failed.[/red]")
    raise typer.Exit(1)


def snapshot(
    root: RootOption = Path("."),
    refresh: Annotated[bool, typer.Option(help="Bypass the cached snapshot.")] = False,
) -> None:
    """Show the deployment's tables, functions and environment variable names."""
    settings = load_settings_or_exit(root)
    cache = DeploymentSnapshotCache(
        ConvexCliFetcher(root.resolve(), timeout=settings.fetch_timeout_seconds),
        ttl_seconds=settings.snapshot_ttl_seconds,
        fetch_timeout=settings.fetch_timeout_seconds,
    )
    try:
        result = asyncio.run(cache.get_snapshot(force_refresh=refresh))
    except ConfigurationMissing as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(2) from exc
    except DeploymentUnavailable as exc:
        console.print(f"[yellow]{exc}[/yellow]")
        raise typer.Exit(1) from exc
    _render_snapshot(result)


def _render_snapshot(result: DeploymentSnapshot) -> None:
    console.print(f"Deployment [bold]{result.deployment}[/bold]")

    functions = Table(title="Functions")
    for header in ("identifier", "type", "visibility"):
        functions.add_column(header)
    for spec in result.functions:
        functions.add_row(spec.identifier, spec.function_type, spec.visibility)
    console.print(functions)

    console.print(f"Tables: {', '.join(result.schema_tables) or '(none)'}")
    console.print(f"Environment variables: {', '.join(sorted(result.env_var_names)) or '(none)'}")
