"""stackmemory init: create the local database and config scaffold.

Creates:
  .stackmemory.db: empty store with schema (or --db path)
  stackmemory.yaml: per-project config template
  ~/.stackmemory/config.yaml: global model config (created once, mode 0o600)

With --email, also creates a first user and prints an API token for it.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from stackmemory.access.auth import issue_token
from stackmemory.config import ensure_global_config
from stackmemory.db.connection import Database
from stackmemory.db.models import User
from stackmemory.db.repository import Repository
from stackmemory.db.schema import initialize

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")
_DB_NAME = ".stackmemory.db"
_CONFIG_NAME = "stackmemory.yaml"
_GITIGNORE_ENTRIES = [_DB_NAME, f"{_DB_NAME}-wal", f"{_DB_NAME}-shm"]


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    email: Annotated[
        str | None,
        typer.Option("--email", help="Create a first user with this email and issue an API token."),
    ] = None,
    tier: Annotated[
        str,
        typer.Option("--tier", help="Tier for the first user: free, pro or founder."),
    ] = "free",
) -> None:
    """Initialize a StackMemory workspace in PROJECT_DIR."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    db_path = project_dir / _DB_NAME

    if db_path.exists():
        console.print(f"[yellow]⚠[/]  {db_path} already exists.")
        if not typer.confirm("Re-initialize? Existing data is preserved.", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    console.print(f"\n[bold]Creating StackMemory workspace in {project_dir} …[/]\n")

    conn = Database(db_path).connect()
    try:
        initialize(conn)
        console.print(f"  [green]✓[/] {_DB_NAME}")

        _create_config(project_dir)
        _update_gitignore(project_dir)

        cfg_path = ensure_global_config()
        console.print(f"  [green]✓[/] {cfg_path} (global config)")

        if email:
            _create_first_user(Repository(conn), email, tier)
    finally:
        conn.close()

    console.print("\n[bold green]✓ Workspace initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. export GEMINI_API_KEY=...  GITHUB_TOKEN=...")
    console.print("  2. stackmemory admin add-project <user-id> <name> --repo <github-url>")
    console.print("  3. stackmemory sync <project-id>")
    console.print("  4. stackmemory serve   then   stackmemory ask <project-id> \"...\"")


def _create_config(project_dir: Path) -> None:
    target = project_dir / _CONFIG_NAME
    if target.exists():
        console.print(f"  [dim]↷ {_CONFIG_NAME} exists, left unchanged[/]")
        return
    target.write_text(
        "# StackMemory project configuration. Secrets go in environment variables.\n"
        "database:\n"
        f"  path: {_DB_NAME}\n"
        "\n"
        "retrieval:\n"
        "  match_threshold: 0.5\n"
        "  match_count: 10\n"
        "\n"
        "indexing:\n"
        "  chunk_chars: 8000\n"
        "  max_files: 50\n"
        "\n"
        "server:\n"
        "  host: 127.0.0.1\n"
        "  port: 8000\n",
        encoding="utf-8",
    )
    console.print(f"  [green]✓[/] {_CONFIG_NAME}")


def _update_gitignore(project_dir: Path) -> None:
    """Add StackMemory entries to .gitignore if it already exists."""
    gitignore = project_dir / ".gitignore"
    if not gitignore.exists():
        return
    existing = gitignore.read_text(encoding="utf-8")
    to_add = [e for e in _GITIGNORE_ENTRIES if e not in existing]
    if to_add:
        with gitignore.open("a", encoding="utf-8") as f:
            f.write("\n# StackMemory\n")
            for entry in to_add:
                f.write(f"{entry}\n")
        console.print("  [green]✓[/] .gitignore (updated with StackMemory entries)")


def _create_first_user(repo: Repository, email: str, tier: str) -> None:
    user_id = str(uuid.uuid4())
    repo.add_user(User(id=user_id, email=email, tier=tier))
    token = issue_token(repo, user_id, "api", label="init")
    console.print(f"  [green]✓[/] user {email} ([bold]{user_id}[/], {tier})")
    console.print(f"\n  API token (shown once):  [bold]{token}[/]")
    console.print("  export STACKMEMORY_TOKEN=<token>")
