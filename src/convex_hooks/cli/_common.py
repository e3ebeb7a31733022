from collections.abc import Iterable
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from convex_hooks.config import HookSettings, load_settings
from convex_hooks.core.checks import default_registry
from convex_hooks.errors import ConfigError
from convex_hooks.models import Finding, Severity

console = Console()

RootOption = Annotated[Path, typer.Option("--root", help="Project root containing the functions directory.")]

_SEVERITY_STYLES = {Severity.ERROR: "red", Severity.WARNING: "yellow"}


def load_settings_or_exit(root: Path) -> HookSettings:
    try:
        settings = load_settings(root.resolve())
        default_registry().resolve(settings.severity_overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(2) from exc
    return settings


def print_findings(findings: Iterable[Finding]) -> int:
    count = 0
    for finding in findings:
        style = _SEVERITY_STYLES.get(finding.severity, "")
        console.print(finding.format_line().rstrip(), style=style, markup=False, highlight=False, soft_wrap=True)
        count += 1
    return count
