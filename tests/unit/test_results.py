"""Tests for per-unit batch outcomes."""

from __future__ import annotations

from stackmemory.errors import EmbeddingFailed
from stackmemory.results import BatchSummary, Outcome, UnitFailure


def test_success_outcome_is_ok():
    outcome = Outcome.success("a.py", 3)
    assert outcome.ok
    assert outcome.value == 3


def test_error_outcome_records_kind_and_message():
    outcome = Outcome.error("a.py#2", EmbeddingFailed("provider 503"))
    assert not outcome.ok
    assert outcome.failure == UnitFailure("a.py#2", "EmbeddingFailed", "provider 503")


def test_failure_dict_hides_message():
    failure = UnitFailure.from_exception("x", RuntimeError("secret detail"))
    assert failure.to_dict() == {"unit": "x", "kind": "RuntimeError"}


def test_batch_summary_keeps_order_and_splits_failures():
    summary: BatchSummary[str] = BatchSummary()
    summary.add(Outcome.success("1", "one"))
    summary.add(Outcome.error("2", ValueError("bad")))
    summary.add(Outcome.success("3", "three"))
    assert summary.succeeded == ["one", "three"]
    assert [f.unit for f in summary.failed] == ["2"]
