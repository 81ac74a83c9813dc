"""Tests for stackmemory sync."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from stackmemory.cli.main import app
from stackmemory.db.models import Project

runner = CliRunner()


@pytest.fixture
def patched(services):
    with patch("stackmemory.cli.sync.build_services", return_value=services):
        yield services


def test_sync_indexes_repository(workspace, repo, project, patched):
    result = runner.invoke(app, ["sync", project.id])
    assert result.exit_code == 0, result.output
    assert "1 chunks from 1 files" in result.output
    assert "next 14.1.0" in result.output

    assert repo.list_file_paths(project.id) == ["src/app.ts"]
    synced = repo.get_project(project.id)
    assert synced.last_synced_at is not None
    assert synced.stack[0].name == "next"


def test_sync_without_repo_url(workspace, repo, user, patched):
    repo.add_project(Project(id="bare", owner_id=user.id, name="bare"))
    result = runner.invoke(app, ["sync", "bare"])
    assert result.exit_code == 1
    assert "no repository URL" in result.output


def test_sync_repo_not_found(workspace, project, patched):
    result = runner.invoke(app, ["sync", project.id, "--repo", "https://github.com/acme/missing"])
    assert result.exit_code == 1
    assert "--token" in result.output


def test_sync_unknown_project(workspace, tmp_db, patched):
    result = runner.invoke(app, ["sync", "ghost"])
    assert result.exit_code == 1
    assert "not found" in result.output
