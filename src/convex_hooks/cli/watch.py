import asyncio
from pathlib import Path
from typing import Annotated

import typer

from convex_hooks.cli._common import RootOption, console, load_settings_or_exit, print_findings
from convex_hooks.core.dispatch import create_dispatcher, saved_event
from convex_hooks.models import Finding
from convex_hooks.watcher.watchfiles_adapter import WatchfilesWatcher


def watch(
    root: RootOption = Path("."),
    offline: Annotated[bool, typer.Option(help="Skip deployment lookups.")] = False,
    codegen: Annotated[bool, typer.Option(help="Run codegen after schema saves.")] = True,
) -> None:
    """Check files as they are saved and run codegen after schema edits."""
    settings = load_settings_or_exit(root)

    def _on_diagnostic(finding: Finding) -> None:
        console.print("[red]Codegen failed[/red]")
        print_findings([finding])

    dispatcher = create_dispatcher(
        root,
        settings,
        with_codegen=codegen,
        with_deployment=not offline,
        on_diagnostic=_on_diagnostic,
    )

    async def _on_change(paths: list[Path]) -> None:
        for path in paths:
            report = await dispatcher.on_saved(saved_event(path))
            if report.findings:
                console.print(f"[bold]{dispatcher.relative_path(path)}[/bold]")
                print_findings(report.findings)

    async def _run() -> None:
        watcher = WatchfilesWatcher(dispatcher.root, _on_change, path_filter=dispatcher.handles)
        await watcher.start()
        try:
            await watcher.wait()
        finally:
            await watcher.stop()
            if dispatcher.codegen is not None:
                await dispatcher.codegen.stop()

    console.print(f"[green]Watching {dispatcher.root / settings.functions_dir}[/green] (Ctrl+C to stop)")
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("Stopped.")
