import stat
from pathlib import Path
from typing import Annotated

import typer

from convex_hooks.cli._common import RootOption, console
from convex_hooks.git import HOOK_MARKER, get_git_repo_root, get_hooks_dir, pre_commit_script


def install_hook(
    root: RootOption = Path("."),
    force: Annotated[bool, typer.Option(help="Overwrite an existing pre-commit hook.")] = False,
) -> None:
    """Install a git pre-commit hook that runs `convex-hooks pre-commit`."""
    repo_root = get_git_repo_root(root.resolve())
    if repo_root is None:
        console.print("[red]Not inside a git repository.[/red]")
        raise typer.Exit(1)
    hooks_dir = get_hooks_dir(repo_root)
    if hooks_dir is None:
        console.print("[red]Could not locate the git hooks directory.[/red]")
        raise typer.Exit(1)

    hook_path = hooks_dir / "pre-commit"
    if hook_path.exists() and HOOK_MARKER not in hook_path.read_text(encoding="utf-8") and not force:
        console.print(f"[yellow]{hook_path} already exists; use --force to replace it.[/yellow]")
        raise typer.Exit(1)

    hooks_dir.mkdir(parents=True, exist_ok=True)
    hook_path.write_text(pre_commit_script(), encoding="utf-8")
    hook_path.chmod(hook_path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    console.print(f"[green]Installed[/green] {hook_path}")
