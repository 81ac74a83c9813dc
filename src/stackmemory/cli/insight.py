"""stackmemory insight: generate an architecture report for a project."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.progress import Progress, SpinnerColumn, TextColumn

from stackmemory.cli.common import load_cfg, open_repo, report_error, require_api_key, require_project
from stackmemory.errors import StackMemoryError
from stackmemory.services import build_services

console = Console()


def insight_cmd(
    project_id: Annotated[str, typer.Argument(help="Project to report on.")],
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Also write the Markdown report here.")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """Generate a Markdown insight report (counts against the monthly insight quota)."""
    cfg = load_cfg(db)
    require_api_key(cfg.generation.model)
    services = build_services(cfg)

    repo = open_repo(cfg.database.path)
    try:
        project = require_project(repo, project_id)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task(f"Analysing {project.name}…", total=None)
            report = services.insight(repo).report(project.owner_id, project.id)
    except StackMemoryError as exc:
        report_error(exc)
    finally:
        repo.conn.close()

    console.print(Markdown(report))
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(report, encoding="utf-8")
        console.print(f"\n[green]✓[/] Written to {output}")
