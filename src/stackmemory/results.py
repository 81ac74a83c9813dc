"""Per-unit outcomes for batch operations (crawl fetches, chunk embeddings, file writes)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass
class UnitFailure:
    """One unit of a batch that did not succeed.

    Attributes:
        unit: Identifier of the failed unit, e.g. a file path or "path#3".
        kind: Error class name (``EmbeddingFailed``, ``StoreWriteFailed`` …).
        message: Operator-facing detail. Never returned to HTTP clients.
    """

    unit: str
    kind: str
    message: str

    @classmethod
    def from_exception(cls, unit: str, exc: BaseException) -> UnitFailure:
        return cls(unit=unit, kind=type(exc).__name__, message=str(exc))

    def to_dict(self) -> dict:
        return {"unit": self.unit, "kind": self.kind}


@dataclass
class Outcome(Generic[T]):
    """Result of a single unit: either a value or a failure, never both."""

    unit: str
    value: T | None = None
    failure: UnitFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, unit: str, value: T) -> Outcome[T]:
        return cls(unit=unit, value=value)

    @classmethod
    def error(cls, unit: str, exc: BaseException) -> Outcome[T]:
        return cls(unit=unit, failure=UnitFailure.from_exception(unit, exc))


@dataclass
class BatchSummary(Generic[T]):
    """Successful values in input order plus the failures collected on fan-in."""

    succeeded: list[T] = field(default_factory=list)
    failed: list[UnitFailure] = field(default_factory=list)

    def add(self, outcome: Outcome[T]) -> None:
        if outcome.ok:
            self.succeeded.append(outcome.value)  # type: ignore[arg-type]
        else:
            self.failed.append(outcome.failure)  # type: ignore[arg-type]
