"""Tests for the Indexer (chunk, embed, store, meter)."""

from __future__ import annotations

import logging
import sqlite3

import pytest

from stackmemory.access.usage import UsageLedger
from stackmemory.crawler.github import FileRecord
from stackmemory.errors import EmbeddingFailed, StoreUnavailable
from stackmemory.ingest.chunker import FixedWindowChunker
from stackmemory.ingest.indexer import Indexer


def _file(path: str, content: str) -> FileRecord:
    return FileRecord(path=path, content=content, size=len(content), language=path.rsplit(".", 1)[-1])


class FlakyEmbedder:
    """Fails for any text listed in *failing*; otherwise returns a unit vector."""

    model = "test/embed-3"
    dimensions = 3

    def __init__(self, failing=(), bad_dims=()):
        self.failing = set(failing)
        self.bad_dims = set(bad_dims)

    def embed(self, text):
        if text in self.failing:
            raise EmbeddingFailed(f"provider rejected {text!r}")
        if text in self.bad_dims:
            return [1.0, 0.0]
        return [1.0, 0.0, 0.0]


@pytest.fixture
def ledger(repo):
    return UsageLedger(repo)


def _indexer(repo, ledger, embedder, chunk_chars=4):
    return Indexer(repo, embedder, ledger, FixedWindowChunker(chunk_chars=chunk_chars))


def test_indexes_all_chunks(repo, ledger, embedder, project):
    summary = _indexer(repo, ledger, embedder).index_files(
        project.id, [_file("a.py", "abcdefgh"), _file("b.py", "xyz")], user_id=project.owner_id
    )
    assert summary.chunks_stored == 3
    assert summary.files_indexed == 2
    assert summary.failed == []
    assert [c.content for c in repo.list_file_chunks(project.id, "a.py")] == ["abcd", "efgh"]


def test_blank_files_are_skipped_not_failed(repo, ledger, embedder, project):
    summary = _indexer(repo, ledger, embedder).index_files(project.id, [_file("empty.py", "  \n")])
    assert summary.files_skipped == 1
    assert summary.files_indexed == 0
    assert embedder.calls == []


def test_embedding_failure_skips_only_that_chunk(repo, ledger, project):
    summary = _indexer(repo, ledger, FlakyEmbedder(failing={"efgh"})).index_files(
        project.id, [_file("a.py", "abcdefghij")]
    )
    assert summary.chunks_stored == 2
    assert [(f.unit, f.kind) for f in summary.failed] == [("a.py#1", "EmbeddingFailed")]
    assert [c.chunk_index for c in repo.list_file_chunks(project.id, "a.py")] == [0, 2]


def test_store_failure_for_one_file_continues_batch(repo, ledger, project):
    embedder = FlakyEmbedder(bad_dims={"bad!"})
    summary = _indexer(repo, ledger, embedder).index_files(
        project.id, [_file("bad.py", "bad!"), _file("good.py", "good")]
    )
    assert summary.files_indexed == 1
    assert [(f.unit, f.kind) for f in summary.failed] == [("bad.py", "StoreWriteFailed")]
    assert repo.count_chunks(project.id, "bad.py") == 0
    assert repo.count_chunks(project.id, "good.py") == 1


def test_reindex_shrinking_file_drops_stale_chunks(repo, ledger, embedder, project):
    indexer = _indexer(repo, ledger, embedder)
    indexer.index_files(project.id, [_file("a.py", "a" * 12)])
    indexer.index_files(project.id, [_file("a.py", "b" * 5)])
    assert [c.content for c in repo.list_file_chunks(project.id, "a.py")] == ["bbbb", "b"]


def test_one_embedding_row_per_stored_chunk(repo, ledger, embedder, project):
    _indexer(repo, ledger, embedder).index_files(
        project.id, [_file("a.py", "abcdefgh")], user_id=project.owner_id
    )
    rows = repo.list_usage(project_id=project.id)
    assert len(rows) == 2
    assert {r.action for r in rows} == {"embedding"}
    assert all(r.input_tokens == 1 and r.output_tokens == 0 for r in rows)
    assert all(r.user_id == project.owner_id for r in rows)


def test_progress_callback_called_per_file(repo, ledger, embedder, project):
    seen = []
    files = [_file("a.py", "a"), _file("b.py", " ")]
    _indexer(repo, ledger, embedder).index_files(project.id, files, on_file=lambda f: seen.append(f.path))
    assert seen == ["a.py", "b.py"]


def test_unreachable_store_aborts(repo, ledger, embedder, project, tmp_db):
    tmp_db.close()
    with pytest.raises(StoreUnavailable):
        _indexer(repo, ledger, embedder).index_files(project.id, [_file("a.py", "a")])


def test_vec_table_is_per_model(repo, ledger, embedder):
    assert _indexer(repo, ledger, embedder).vec_table == "vec_chunks_test_embed_3"


def test_summary_to_dict(repo, ledger, project):
    summary = _indexer(repo, ledger, FlakyEmbedder(failing={"a"})).index_files(
        project.id, [_file("a.py", "a")]
    )
    assert summary.to_dict()["failed"] == [{"unit": "a.py#0", "kind": "EmbeddingFailed"}]


class LockedLedger(UsageLedger):
    """Ledger whose writes fail as if another writer held the database lock."""

    def record(self, *args, **kwargs):
        raise sqlite3.OperationalError("database is locked")


def test_ledger_failure_does_not_abort_batch(repo, embedder, project, caplog):
    indexer = _indexer(repo, LockedLedger(repo), embedder)
    with caplog.at_level(logging.ERROR, logger="stackmemory.ingest.indexer"):
        summary = indexer.index_files(project.id, [_file("a.ts", "abcd"), _file("b.ts", "efgh")])

    assert summary.files_indexed == 2
    assert summary.chunks_stored == 2
    assert summary.failed == []
    assert repo.count_chunks(project.id, "b.ts") == 1
    assert "database is locked" in caplog.text


def test_repeated_reindex_is_idempotent(repo, ledger, embedder, project):
    indexer = _indexer(repo, ledger, embedder)
    files = [_file("a.py", "abcdefghij"), _file("b.py", "xyz")]

    def snapshot():
        contents = {path: [c.content for c in repo.list_file_chunks(project.id, path)] for path in ("a.py", "b.py")}
        vectors = repo.conn.execute(f"SELECT COUNT(*) FROM {indexer.vec_table}").fetchone()[0]
        return repo.count_chunks(project.id), contents, vectors

    indexer.index_files(project.id, files)
    first = snapshot()
    for _ in range(3):
        indexer.index_files(project.id, files)
        assert snapshot() == first
    assert first == (4, {"a.py": ["abcd", "efgh", "ij"], "b.py": ["xyz"]}, 4)
