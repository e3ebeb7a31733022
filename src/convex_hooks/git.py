import subprocess
from pathlib import Path

HOOK_MARKER = "# installed by convex-hooks"


def get_git_repo_root(start_dir: Path) -> Path | None:
    result = subprocess.run(
        ["git", "-C", str(start_dir), "rev-parse", "--show-toplevel"],
        check=False,
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        return None
    root = result.stdout.strip()
    if not root:
        return None
    return Path(root)


def get_staged_paths(repo_root: Path) -> list[str]:
    """Return staged added/copied/modified/renamed paths, relative to *repo_root*."""
    result = subprocess.run(
        ["git", "-C", str(repo_root), "diff", "--cached", "--name-only", "--diff-filter=ACMR"],
        check=False,
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        return []
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def get_staged_content(repo_root: Path, path: Path) -> str | None:
    """Return the index version of *path*, or ``None`` when it is not staged."""
    try:
        relative = path.resolve().relative_to(repo_root.resolve()).as_posix()
    except ValueError:
        return None
    result = subprocess.run(
        ["git", "-C", str(repo_root), "show", f":{relative}"],
        check=False,
        capture_output=True,
    )
    if result.returncode != 0:
        return None
    return result.stdout.decode("utf-8", errors="replace")


def get_hooks_dir(repo_root: Path) -> Path | None:
    result = subprocess.run(
        ["git", "-C", str(repo_root), "rev-parse", "--git-path", "hooks"],
        check=False,
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        return None
    hooks = Path(result.stdout.strip())
    return hooks if hooks.is_absolute() else repo_root / hooks


def pre_commit_script(executable: str = "convex-hooks") -> str:
    return f'#!/bin/sh\n{HOOK_MARKER}\nexec {executable} pre-commit "$@"\n'
