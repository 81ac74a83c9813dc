"""Tests for the insight report."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from stackmemory.access.gate import UsageGate
from stackmemory.access.usage import UsageLedger
from stackmemory.db.models import ChunkRecord, User
from stackmemory.db.vectors import ensure_vec_table
from stackmemory.errors import FeatureForbidden, InvalidRequest, ProjectNotFound
from stackmemory.rag.insight import InsightReporter


def _index(repo, path, content):
    table = ensure_vec_table(repo.conn, "test_embed_3", 3)
    repo.replace_file_chunks(
        "proj-1", path, [ChunkRecord(path, 0, content, embedding=[1.0, 0.0, 0.0])],
        embedding_model="test/embed-3", vec_table=table,
    )


@pytest.fixture
def generator():
    gen = MagicMock()
    gen.complete.return_value = ("## Overview\nA demo app.", "gemini/gemini-2.0-flash")
    return gen


@pytest.fixture
def reporter(repo, generator):
    ledger = UsageLedger(repo)
    return InsightReporter(repo, UsageGate(repo, ledger), ledger, generator)


def test_report_uses_tree_and_critical_files(repo, project, reporter, generator):
    _index(repo, "README.md", "# Demo readme")
    _index(repo, "src/app.ts", "app code")

    text = reporter.report(project.owner_id, project.id)

    assert text.startswith("## Overview")
    prompt = generator.complete.call_args.args[0][1]["content"]
    assert "README.md\nsrc/app.ts" in prompt
    assert "--- FILE: README.md ---\n# Demo readme" in prompt
    assert "--- FILE: src/app.ts ---" not in prompt


def test_report_appends_one_insight_row(repo, project, reporter):
    _index(repo, "README.md", "# Demo")
    reporter.report(project.owner_id, project.id)
    rows = repo.list_usage(project_id=project.id)
    assert [r.action for r in rows] == ["insight"]
    assert rows[0].output_tokens > 0


def test_free_tier_allows_one_report_per_month(repo, project, reporter):
    _index(repo, "README.md", "# Demo")
    reporter.report(project.owner_id, project.id)
    with pytest.raises(FeatureForbidden, match="insight"):
        reporter.report(project.owner_id, project.id)


def test_other_users_project_is_not_found(repo, project, reporter, generator):
    repo.add_user(User(id="intruder"))
    with pytest.raises(ProjectNotFound):
        reporter.report("intruder", project.id)
    generator.complete.assert_not_called()


def test_unsynced_project_is_rejected(project, reporter, generator):
    with pytest.raises(InvalidRequest) as exc_info:
        reporter.report(project.owner_id, project.id)
    assert "Sync the project" in exc_info.value.user_message
    generator.complete.assert_not_called()
