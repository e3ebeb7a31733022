import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from convex_hooks.cli.check import check, checks, pre_commit
from convex_hooks.cli.deploy import codegen, snapshot
from convex_hooks.cli.hook import install_hook
from convex_hooks.cli.serve import serve_app
from convex_hooks.cli.watch import watch

app = typer.Typer(
    name="convex-hooks",
    help="Convex hooks: save-time checks, commit gating and codegen for Convex projects.",
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger("convex_hooks")
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False, level=level))


@app.callback()
def _configure(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
) -> None:
    configure_logging(verbose)


app.command("check")(check)
app.command("pre-commit")(pre_commit)
app.command("checks")(checks)
app.command("watch")(watch)
app.command("codegen")(codegen)
app.command("snapshot")(snapshot)
app.command("install-hook")(install_hook)
app.add_typer(serve_app, name="serve")


def main() -> None:
    app()
