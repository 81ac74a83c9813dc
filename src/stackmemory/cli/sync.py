"""stackmemory sync: crawl a project's GitHub repository and (re)index it.

The repository URL comes from --repo, else from the project record. The
GitHub token comes from --token, else GITHUB_TOKEN (public repos work
without one, at a lower rate limit).
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from stackmemory.cli.common import fail, load_cfg, open_repo, report_error, require_api_key, require_project
from stackmemory.cli.errors import err_no_repo_url, warn_manifest
from stackmemory.crawler.github import FileRecord
from stackmemory.crawler.manifest import ManifestStatus
from stackmemory.errors import StackMemoryError
from stackmemory.ingest.sync import SyncStatus, sync_project
from stackmemory.services import build_services

console = Console()


def sync_cmd(
    project_id: Annotated[str, typer.Argument(help="Project to sync.")],
    repo_url: Annotated[
        str | None,
        typer.Option("--repo", help="GitHub repository URL (default: the project's stored URL)."),
    ] = None,
    token: Annotated[
        str | None,
        typer.Option("--token", help="GitHub token (default: $GITHUB_TOKEN).", envvar="GITHUB_TOKEN"),
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """Crawl the project's repository and index its files."""
    cfg = load_cfg(db)
    require_api_key(cfg.embedding.model)
    services = build_services(cfg)

    repo = open_repo(cfg.database.path)
    try:
        project = require_project(repo, project_id)
        url = repo_url or project.repo_url
        if not url:
            fail(err_no_repo_url(project_id))

        console.print(f"\n[bold]→ {url}[/]")
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            transient=True,
            console=console,
        ) as prog:
            task = prog.add_task("Crawling…", total=None)

            def on_file(record: FileRecord) -> None:
                prog.update(task, description=f"Indexing {record.path}", advance=1)

            with services.crawler(token) as crawler:
                result = sync_project(
                    project_id,
                    url,
                    repo=repo,
                    crawler=crawler,
                    indexer=services.indexer(repo),
                    on_file=on_file,
                )
    except StackMemoryError as exc:
        report_error(exc)
    finally:
        repo.conn.close()

    if result.status is SyncStatus.NOT_FOUND:
        fail(f"[red]Error:[/] {result.message}\n  Check the URL, or pass --token for private repositories.")
    if result.status is SyncStatus.ERROR:
        fail(f"[red]Error:[/] {result.message} ({result.reason})")

    console.print(
        f"  [green]✓[/] {result.chunks_stored} chunks from {result.files_found} files"
    )
    for failure in result.failed:
        console.print(f"  [yellow]✗[/] {failure.unit}: {failure.kind}")

    manifest = result.manifest
    if manifest is not None and manifest.status is not ManifestStatus.FOUND:
        console.print(warn_manifest(manifest.status.value, manifest.detail))
    elif result.stack:
        console.print("  Stack: " + ", ".join(f"{s.name} {s.version or ''}".strip() for s in result.stack))
