import asyncio
from functools import partial
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from convex_hooks.cli._common import RootOption, console, load_settings_or_exit, print_findings
from convex_hooks.core.checks import default_registry
from convex_hooks.core.dispatch import ContentReader, create_dispatcher, saved_event
from convex_hooks.git import get_git_repo_root, get_staged_content, get_staged_paths
from convex_hooks.models import Finding, Verdict


def check(
    paths: Annotated[list[Path], typer.Argument(help="Saved files to check.")],
    root: RootOption = Path("."),
    offline: Annotated[bool, typer.Option(help="Skip deployment lookups.")] = False,
) -> None:
    """Run the save-time checks on files and print an advisory report."""
    settings = load_settings_or_exit(root)
    dispatcher = create_dispatcher(root, settings, with_codegen=False, with_deployment=not offline)

    async def _run() -> list[Finding]:
        findings: list[Finding] = []
        for path in paths:
            report = await dispatcher.on_saved(saved_event(path.resolve()))
            findings.extend(report.findings)
        return findings

    count = print_findings(asyncio.run(_run()))
    if count == 0:
        console.print("[green]No findings.[/green]")


def pre_commit(
    paths: Annotated[
        list[Path] | None, typer.Argument(help="Changed files. Defaults to the files staged in git.")
    ] = None,
    root: RootOption = Path("."),
) -> None:
    """Gate a commit on the pre-commit checks; exits 1 when an error finding remains."""
    settings = load_settings_or_exit(root)
    dispatcher = create_dispatcher(root, settings, with_codegen=False, with_deployment=False)

    read: ContentReader | None = None
    if paths:
        targets = [p.resolve() for p in paths]
    else:
        repo_root = get_git_repo_root(dispatcher.root)
        if repo_root is None:
            console.print("[yellow]Not inside a git repository; nothing to check.[/yellow]")
            return
        targets = [repo_root / p for p in get_staged_paths(repo_root)]
        # check what will be committed, not the working tree
        read = partial(get_staged_content, repo_root)

    report = dispatcher.gate_commit(targets, read)
    print_findings(report.findings)
    if report.verdict is Verdict.FAIL:
        console.print("[red]Commit blocked by error findings.[/red]")
        raise typer.Exit(report.exit_code)


def checks(root: RootOption = Path(".")) -> None:
    """List the registered checks after severity overrides."""
    settings = load_settings_or_exit(root)
    registry = default_registry().resolve(settings.severity_overrides)

    table = Table(show_lines=False)
    for header in ("id", "categories", "severity", "description"):
        table.add_column(header)
    for definition in registry:
        row = definition.describe()
        table.add_row(row["id"], row["categories"], row["severity"], row["description"])
    console.print(table)
    console.print(f"({len(registry)} checks)")
