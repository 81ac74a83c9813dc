"""StackMemory database layer."""

from stackmemory.db.connection import Database
from stackmemory.db.migrations import MIGRATIONS, run_migrations
from stackmemory.db.repository import Repository
from stackmemory.db.schema import initialize
from stackmemory.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
