"""Tests for stackmemory init."""

from __future__ import annotations

import sqlite3

import yaml
from typer.testing import CliRunner

from stackmemory.cli.main import app
from stackmemory.db.connection import Database
from stackmemory.db.repository import Repository

runner = CliRunner()


def test_init_creates_database_and_config(workspace):
    result = runner.invoke(app, ["init"])

    assert result.exit_code == 0, result.output
    assert (workspace / ".stackmemory.db").exists()
    cfg = yaml.safe_load((workspace / "stackmemory.yaml").read_text(encoding="utf-8"))
    assert cfg["database"]["path"] == ".stackmemory.db"
    assert cfg["indexing"]["chunk_chars"] == 8000
    assert (workspace / "home" / "config.yaml").exists()
    assert "Workspace initialized" in result.output


def test_init_schema_is_applied(workspace):
    runner.invoke(app, ["init"])
    conn = sqlite3.connect(workspace / ".stackmemory.db")
    tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()
    assert {"users", "projects", "chunks", "usage_logs", "credentials"} <= tables


def test_init_into_subdirectory(workspace):
    result = runner.invoke(app, ["init", "nested/dir"])
    assert result.exit_code == 0
    assert (workspace / "nested" / "dir" / ".stackmemory.db").exists()


def test_init_keeps_existing_config(workspace):
    (workspace / "stackmemory.yaml").write_text("retrieval:\n  match_count: 3\n", encoding="utf-8")
    runner.invoke(app, ["init"])
    assert "match_count: 3" in (workspace / "stackmemory.yaml").read_text(encoding="utf-8")


def test_init_updates_existing_gitignore(workspace):
    (workspace / ".gitignore").write_text("node_modules\n", encoding="utf-8")
    runner.invoke(app, ["init"])
    content = (workspace / ".gitignore").read_text(encoding="utf-8")
    assert ".stackmemory.db\n" in content
    assert ".stackmemory.db-wal" in content


def test_init_without_gitignore_does_not_create_one(workspace):
    runner.invoke(app, ["init"])
    assert not (workspace / ".gitignore").exists()


def test_reinit_declined(workspace):
    runner.invoke(app, ["init"])
    result = runner.invoke(app, ["init"], input="n\n")
    assert result.exit_code == 0
    assert "Cancelled" in result.output


def test_init_with_email_creates_user_and_token(workspace):
    result = runner.invoke(app, ["init", "--email", "dev@example.com", "--tier", "pro"])

    assert result.exit_code == 0, result.output
    assert "API token (shown once)" in result.output
    with Database(workspace / ".stackmemory.db") as conn:
        row = conn.execute("SELECT id, tier FROM users WHERE email = ?", ("dev@example.com",)).fetchone()
        assert row["tier"] == "pro"
        assert conn.execute("SELECT COUNT(*) FROM credentials").fetchone()[0] == 1
        assert Repository(conn).get_user(row["id"]).email == "dev@example.com"
