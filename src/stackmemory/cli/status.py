"""stackmemory status command.

Without a project: database overview (users, projects, chunks, vec tables).
With a project: repository, stack, sync state and cost totals.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stackmemory.access.usage import UsageLedger
from stackmemory.cli.common import load_cfg, open_repo, require_project
from stackmemory.db.repository import Repository
from stackmemory.db.vectors import list_vec_tables
from stackmemory.rag.assembler import format_stack

console = Console()


def status_cmd(
    project_id: Annotated[str | None, typer.Argument(help="Show details for this project.")] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """Show database status, or one project's sync state and costs."""
    cfg = load_cfg(db)
    db_path = Path(cfg.database.path)
    repo = open_repo(db_path)
    try:
        if project_id is None:
            _show_database_panel(db_path, repo)
        else:
            _show_project_panel(repo, project_id)
    finally:
        repo.conn.close()


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_database_panel(db_path: Path, repo: Repository) -> None:
    conn = repo.conn
    size_mb = db_path.stat().st_size / (1024 * 1024)
    projects = repo.list_projects()
    vec_tables = _describe_vec_tables(conn)

    lines = [
        f"Database:  {db_path} ({size_mb:.1f} MB)",
        f"Users: [bold]{_count(conn, 'users')}[/]  |  "
        f"Projects: [bold]{len(projects)}[/]  |  "
        f"Chunks: [bold]{_count(conn, 'chunks'):,}[/]  |  "
        f"Vec tables: [bold]{len(vec_tables)}[/]",
    ]
    lines.extend(f"  {vt}" for vt in vec_tables)
    if not projects:
        lines.append("[dim]No projects yet.[/]  Run:  stackmemory admin add-project <owner> <name>")
    console.print(Panel("\n".join(lines), title="[bold]StackMemory[/]", expand=False))


def _show_project_panel(repo: Repository, project_id: str) -> None:
    project = require_project(repo, project_id)
    last_chunk = repo.last_indexed_at(project.id)
    files = repo.list_file_paths(project.id)

    lines = [
        f"Project:    [bold]{project.name}[/] ({project.id})",
        f"Owner:      {project.owner_id}",
        f"Repository: {project.repo_url or '[dim]not set[/]'}",
        f"Last sync:  {project.last_synced_at or '[yellow]never[/]'}",
        f"Indexed:    [bold]{repo.count_chunks(project.id):,}[/] chunks in {len(files)} files"
        + (f" (newest {last_chunk[:16]})" if last_chunk else ""),
        "",
        "Stack:",
        format_stack(project.stack),
    ]
    console.print(Panel("\n".join(lines), title="[bold]Project[/]", expand=False))

    summary = UsageLedger(repo).cost_summary(project_id=project.id)
    if not summary["actions"]:
        return
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("Action")
    table.add_column("Events", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost (USD)", justify="right")
    for row in summary["actions"]:
        table.add_row(
            row["action"],
            str(row["events"]),
            f"{row['input_tokens'] + row['output_tokens']:,}",
            f"${row['cost']:.4f}",
        )
    console.print(Panel(table, title=f"[bold]Usage[/] [dim](total ${summary['cost']:.4f})[/]", expand=False))


# ---------------------------------------------------------------------------
# DB helpers
# ---------------------------------------------------------------------------


def _count(conn: sqlite3.Connection, table: str) -> int:
    row = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()  # noqa: S608
    return row[0] if row else 0


def _describe_vec_tables(conn: sqlite3.Connection) -> list[str]:
    """Return descriptions of existing vec tables (name + vector count)."""
    result: list[str] = []
    for name in list_vec_tables(conn):
        count_row = conn.execute(f"SELECT COUNT(*) FROM [{name}]").fetchone()  # noqa: S608
        result.append(f"[dim]{name}[/] ({count_row[0] if count_row else 0:,} vectors)")
    return result
