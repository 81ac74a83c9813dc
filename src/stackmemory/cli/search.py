"""stackmemory search: raw similarity search over a project's chunks."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from stackmemory.cli.common import load_cfg, open_repo, report_error, require_api_key, require_project
from stackmemory.errors import StackMemoryError
from stackmemory.rag.retriever import retrieve
from stackmemory.services import build_services

console = Console()


def search_cmd(
    project_id: Annotated[str, typer.Argument(help="Project to search.")],
    query: Annotated[str, typer.Argument(help="Search text.")],
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Maximum matches.")] = None,
    threshold: Annotated[
        float | None, typer.Option("--threshold", help="Minimum similarity (0.0–1.0).")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """Show the chunks most similar to QUERY (Pro feature for the project owner)."""
    cfg = load_cfg(db)
    require_api_key(cfg.embedding.model)
    services = build_services(cfg)

    repo = open_repo(cfg.database.path)
    try:
        project = require_project(repo, project_id)
        gate = services.gate(repo)
        gate.require(gate.profile(project.owner_id), "search")
        matches = retrieve(
            project.id,
            query,
            repo,
            services.embedder,
            services.retrieval,
            threshold=threshold,
            limit=limit,
        )
    except StackMemoryError as exc:
        report_error(exc)
    finally:
        repo.conn.close()

    if not matches:
        console.print("[yellow]No matches above the similarity threshold.[/]")
        raise typer.Exit(0)

    table = Table(title=f"Matches for {query!r}", show_header=True, header_style="bold")
    table.add_column("Similarity", justify="right")
    table.add_column("File", style="bold")
    table.add_column("Chunk", justify="right")
    table.add_column("Preview", style="dim")
    for m in matches:
        preview = " ".join(m.content.split())[:80]
        table.add_row(f"{m.similarity:.3f}", m.file_path, str(m.chunk_index), preview)
    console.print(table)
