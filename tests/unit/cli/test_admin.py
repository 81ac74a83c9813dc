"""Tests for stackmemory admin commands."""

from __future__ import annotations

from typer.testing import CliRunner

from stackmemory.access.auth import Credentials, CompositeAuthenticator
from stackmemory.cli.main import app

runner = CliRunner()


def test_add_user(workspace, tmp_db, repo):
    result = runner.invoke(app, ["admin", "add-user", "ana@example.com", "--tier", "pro", "--id", "ana"])
    assert result.exit_code == 0, result.output
    assert repo.get_user("ana").tier == "pro"


def test_add_user_duplicate_id(workspace, user):
    result = runner.invoke(app, ["admin", "add-user", "x@example.com", "--id", user.id])
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_add_user_unknown_tier(workspace, tmp_db):
    result = runner.invoke(app, ["admin", "add-user", "x@example.com", "--tier", "platinum"])
    assert result.exit_code == 1
    assert "Unknown tier" in result.output


def test_set_plan(workspace, repo, user):
    result = runner.invoke(
        app,
        ["admin", "set-plan", user.id, "--chat-limit", "100", "--trial-until", "2030-01-01T00:00:00Z"],
    )
    assert result.exit_code == 0, result.output
    updated = repo.get_user(user.id)
    assert updated.custom_limit_chat == 100
    assert updated.pro_trial_ends_at == "2030-01-01T00:00:00Z"
    assert updated.tier == "free"


def test_set_plan_unknown_user(workspace, tmp_db):
    result = runner.invoke(app, ["admin", "set-plan", "ghost", "--tier", "pro"])
    assert result.exit_code == 1
    assert "No user 'ghost'" in result.output


def test_add_and_list_projects(workspace, repo, user):
    result = runner.invoke(
        app,
        ["admin", "add-project", user.id, "web", "--repo", "https://github.com/acme/web", "--id", "web-1"],
    )
    assert result.exit_code == 0, result.output
    assert "stackmemory sync web-1" in result.output
    assert repo.get_project("web-1").repo_url == "https://github.com/acme/web"

    listing = runner.invoke(app, ["admin", "list-projects", "--owner", user.id])
    assert listing.exit_code == 0
    assert "web-1" in listing.output
    assert "never" in listing.output


def test_add_project_without_repo_hints_flag(workspace, repo, user):
    result = runner.invoke(app, ["admin", "add-project", user.id, "web"])
    assert result.exit_code == 0, result.output
    (created,) = repo.list_projects(user.id)
    assert f"stackmemory sync {created.id} --repo <github-url>" in result.output


def test_list_projects_empty(workspace, tmp_db):
    result = runner.invoke(app, ["admin", "list-projects"])
    assert result.exit_code == 0
    assert "No projects yet." in result.output


def test_issue_token_authenticates(workspace, repo, user):
    result = runner.invoke(app, ["admin", "issue-token", user.id, "--label", "laptop"])
    assert result.exit_code == 0, result.output
    token = result.output.strip().splitlines()[-1]
    identity = CompositeAuthenticator.default(repo).require(Credentials(bearer_token=token))
    assert identity.user_id == user.id


def test_issue_token_unknown_kind(workspace, user):
    result = runner.invoke(app, ["admin", "issue-token", user.id, "--kind", "password"])
    assert result.exit_code == 1
    assert "Unknown credential kind" in result.output
