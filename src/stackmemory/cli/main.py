"""StackMemory CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from stackmemory.cli.admin import admin_app
from stackmemory.cli.ask import ask_cmd
from stackmemory.cli.init import init_cmd
from stackmemory.cli.insight import insight_cmd
from stackmemory.cli.search import search_cmd
from stackmemory.cli.serve import serve_cmd
from stackmemory.cli.status import status_cmd
from stackmemory.cli.sync import sync_cmd
from stackmemory.cli.usage import usage_cmd
from stackmemory.log import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("stackmemory")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"stackmemory {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="stackmemory",
    help=(
        "StackMemory: ask questions about a code project.\n\n"
        "  stackmemory sync   Crawl a GitHub repository into a project.\n"
        "  stackmemory ask    Stream an answer grounded in the project's files."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log pipeline progress to stderr."),
    ] = False,
) -> None:
    """StackMemory: ask questions about a code project."""
    configure_logging("INFO" if verbose else "WARNING", rich_output=True)


app.command("init")(init_cmd)
app.command("serve")(serve_cmd)
app.command("sync")(sync_cmd)
app.command("ask")(ask_cmd)
app.command("search")(search_cmd)
app.command("status")(status_cmd)
app.command("usage")(usage_cmd)
app.command("insight")(insight_cmd)
app.add_typer(admin_app, name="admin")


@app.command("version")
def version_cmd() -> None:
    """Show the installed StackMemory version."""
    typer.echo(f"stackmemory {_installed_version()}")


if __name__ == "__main__":
    app()
