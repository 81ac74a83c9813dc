"""Shared CLI plumbing: config loading, database access and error exits."""

from __future__ import annotations

from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console

from stackmemory.cli.errors import (
    err_config,
    err_forbidden,
    err_no_api_key,
    err_no_db,
    err_pipeline,
    err_project_not_found,
    err_user_not_found,
)
from stackmemory.config import ConfigError, StackMemoryConfig, load_config
from stackmemory.db.connection import Database
from stackmemory.db.models import Project, User
from stackmemory.db.repository import Repository
from stackmemory.db.schema import initialize
from stackmemory.errors import FeatureForbidden, StackMemoryError
from stackmemory.rag.llm_client import provider_of, validate_api_key

console = Console()


def fail(message: str) -> NoReturn:
    console.print(message)
    raise typer.Exit(1)


def load_cfg(db: Path | None = None) -> StackMemoryConfig:
    """Load config from the working directory; ``--db`` overrides database.path."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        fail(err_config(str(exc)))
    if db is not None:
        cfg.database.path = str(db)
    return cfg


def open_repo(db_path: Path | str) -> Repository:
    """Open an existing database (migrating it if needed). Caller closes repo.conn."""
    db_path = Path(db_path)
    if not db_path.exists():
        fail(err_no_db(str(db_path)))
    conn = Database(db_path).connect()
    initialize(conn)
    return Repository(conn)


def require_api_key(model: str) -> None:
    try:
        validate_api_key(model)
    except EnvironmentError:
        fail(err_no_api_key(provider_of(model)))


def require_user(repo: Repository, user_id: str) -> User:
    user = repo.get_user(user_id)
    if user is None:
        fail(err_user_not_found(user_id))
    return user


def require_project(repo: Repository, project_id: str, owner_id: str | None = None) -> Project:
    project = repo.get_project(project_id)
    if project is None or (owner_id is not None and project.owner_id != owner_id):
        fail(err_project_not_found(project_id))
    return project


def report_error(exc: StackMemoryError) -> NoReturn:
    if isinstance(exc, FeatureForbidden):
        fail(err_forbidden(exc.user_message))
    fail(err_pipeline(exc.user_message, str(exc)))
