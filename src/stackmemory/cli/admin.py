"""stackmemory admin: users, projects and credentials in the local store.

Commands:
  add-user <email>               create a user
  set-plan <user-id>             change tier, custom limits or trial end
  add-project <owner> <name>     create a project
  list-projects                  projects with sync state
  issue-token <user-id>          new API or session token
"""

from __future__ import annotations

import sqlite3
import uuid
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from stackmemory.access.auth import CREDENTIAL_KINDS, issue_token
from stackmemory.access.gate import TIERS
from stackmemory.cli.common import fail, load_cfg, open_repo, require_user
from stackmemory.db.models import Project, User

console = Console()

admin_app = typer.Typer(
    name="admin",
    help="Manage users, projects and credentials.",
    add_completion=False,
)


def _check_tier(tier: str) -> None:
    if tier not in TIERS:
        fail(f"[red]Error:[/] Unknown tier '{tier}'. Choose one of: {', '.join(TIERS)}")


@admin_app.command("add-user")
def add_user_cmd(
    email: Annotated[str, typer.Argument(help="User email.")],
    tier: Annotated[str, typer.Option("--tier", help="free, pro or founder.")] = "free",
    user_id: Annotated[str | None, typer.Option("--id", help="Explicit user id (default: uuid4).")] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """Create a user."""
    _check_tier(tier)
    cfg = load_cfg(db)
    repo = open_repo(cfg.database.path)
    new_id = user_id or str(uuid.uuid4())
    try:
        repo.add_user(User(id=new_id, email=email, tier=tier))
    except sqlite3.IntegrityError:
        fail(f"[red]Error:[/] A user with id '{new_id}' already exists.")
    finally:
        repo.conn.close()
    console.print(f"[green]✓[/] User [bold]{new_id}[/] ({email}, {tier})")


@admin_app.command("set-plan")
def set_plan_cmd(
    user_id: Annotated[str, typer.Argument(help="User id.")],
    tier: Annotated[str | None, typer.Option("--tier", help="free, pro or founder.")] = None,
    chat_limit: Annotated[int | None, typer.Option("--chat-limit", help="Custom monthly chat limit.")] = None,
    insight_limit: Annotated[
        int | None, typer.Option("--insight-limit", help="Custom monthly insight limit.")
    ] = None,
    trial_until: Annotated[
        str | None, typer.Option("--trial-until", help="Pro trial end, e.g. 2026-12-31T00:00:00Z.")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """Change a user's tier, custom limits or trial end."""
    if tier is not None:
        _check_tier(tier)
    cfg = load_cfg(db)
    repo = open_repo(cfg.database.path)
    try:
        require_user(repo, user_id)
        repo.update_user_plan(
            user_id,
            tier=tier,
            custom_limit_chat=chat_limit,
            custom_limit_insight=insight_limit,
            pro_trial_ends_at=trial_until,
        )
        user = repo.get_user(user_id)
    finally:
        repo.conn.close()
    console.print(
        f"[green]✓[/] {user.id}: tier {user.tier}, "
        f"chat limit {user.custom_limit_chat or 'default'}, "
        f"insight limit {user.custom_limit_insight or 'default'}, "
        f"trial {user.pro_trial_ends_at or '-'}"
    )


@admin_app.command("add-project")
def add_project_cmd(
    owner_id: Annotated[str, typer.Argument(help="Owning user id.")],
    name: Annotated[str, typer.Argument(help="Project name.")],
    repo_url: Annotated[str | None, typer.Option("--repo", help="GitHub repository URL.")] = None,
    project_id: Annotated[str | None, typer.Option("--id", help="Explicit project id (default: uuid4).")] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """Create a project owned by OWNER_ID."""
    cfg = load_cfg(db)
    repo = open_repo(cfg.database.path)
    new_id = project_id or str(uuid.uuid4())
    try:
        require_user(repo, owner_id)
        repo.add_project(Project(id=new_id, owner_id=owner_id, name=name, repo_url=repo_url))
    except sqlite3.IntegrityError:
        fail(f"[red]Error:[/] A project with id '{new_id}' already exists.")
    finally:
        repo.conn.close()
    console.print(f"[green]✓[/] Project [bold]{new_id}[/] ({name})")
    console.print(
        f"  Next:  stackmemory sync {new_id}" + ("" if repo_url else " --repo <github-url>"),
        soft_wrap=True,
    )


@admin_app.command("list-projects")
def list_projects_cmd(
    owner_id: Annotated[str | None, typer.Option("--owner", help="Only this user's projects.")] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """List projects with their repository and last sync time."""
    cfg = load_cfg(db)
    repo = open_repo(cfg.database.path)
    try:
        projects = repo.list_projects(owner_id)
        chunk_counts = {p.id: repo.count_chunks(p.id) for p in projects}
    finally:
        repo.conn.close()

    if not projects:
        console.print("[yellow]No projects yet.[/]  Run:  stackmemory admin add-project <owner> <name>")
        raise typer.Exit(0)

    table = Table(title="Projects", show_header=True, header_style="bold")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Owner", style="dim")
    table.add_column("Repository")
    table.add_column("Chunks", justify="right")
    table.add_column("Last sync", style="dim")
    for p in projects:
        table.add_row(
            p.id,
            p.name,
            p.owner_id,
            p.repo_url or "[dim]-[/]",
            f"{chunk_counts[p.id]:,}",
            (p.last_synced_at or "never")[:16],
        )
    console.print(table)


@admin_app.command("issue-token")
def issue_token_cmd(
    user_id: Annotated[str, typer.Argument(help="User id.")],
    kind: Annotated[str, typer.Option("--kind", help="api (bearer) or session (cookie).")] = "api",
    label: Annotated[str, typer.Option("--label", help="Free-text label.")] = "",
    expires_at: Annotated[
        str | None, typer.Option("--expires-at", help="Expiry, e.g. 2026-12-31 00:00:00.")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """Issue a credential for USER_ID. The token is printed once and never stored."""
    if kind not in CREDENTIAL_KINDS:
        fail(f"[red]Error:[/] Unknown credential kind '{kind}'. Choose api or session.")
    cfg = load_cfg(db)
    repo = open_repo(cfg.database.path)
    try:
        require_user(repo, user_id)
        token = issue_token(repo, user_id, kind, label=label, expires_at=expires_at)
    finally:
        repo.conn.close()
    console.print(f"[green]✓[/] {kind} token for {user_id} (shown once):")
    console.print(token, markup=False, highlight=False)
