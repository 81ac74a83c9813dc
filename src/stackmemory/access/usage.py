"""Usage ledger: append-only cost metering for billable actions.

Every embedding call, chat answer and insight report appends one row to
``usage_logs``. Token counts are estimates (4 characters ≈ 1 token); cost is
derived from a fixed per-model price table. Monthly feature counters are
computed from this table; there are no separately maintained counters.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import datetime, timezone

from stackmemory.db.models import UsageLogEntry
from stackmemory.db.repository import Repository

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4

ACTIONS: frozenset[str] = frozenset(["embedding", "chat", "insight", "onboarding"])

# USD per 1M tokens: (input, output). Keyed by model name without provider prefix.
_PRICING: dict[str, tuple[float, float]] = {
    "text-embedding-ada-002": (0.02, 0.0),
    "text-embedding-3-small": (0.02, 0.0),
    "text-embedding-004": (0.0, 0.0),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (5.00, 15.00),
    "gemini-2.0-flash": (0.10, 0.40),
    "gemini-1.5-flash": (0.075, 0.30),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def estimate_tokens(text: str) -> int:
    """Estimate tokens for *text*: ceil(characters / 4)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def price_key(model: str) -> str:
    """Strip the LiteLLM provider prefix: 'gemini/gemini-2.0-flash' -> 'gemini-2.0-flash'."""
    return model.split("/")[-1]


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """USD cost estimate for one call. Unknown models cost 0."""
    input_price, output_price = _PRICING.get(price_key(model), (0.0, 0.0))
    return (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price


def month_start(now: datetime) -> str:
    """First instant of *now*'s UTC month, formatted like usage_logs.created_at."""
    now = now.astimezone(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0).strftime(
        "%Y-%m-%d %H:%M:%S"
    )


class UsageLedger:
    """Writes and reads the append-only usage ledger.

    Args:
        repo: Open repository.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(self, repo: Repository, clock: Callable[[], datetime] | None = None) -> None:
        self._repo = repo
        self._clock = clock or _utcnow

    def record(
        self,
        action: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        *,
        user_id: str | None = None,
        project_id: str | None = None,
    ) -> UsageLogEntry:
        """Append one ledger row and return it.

        Raises:
            ValueError: If *action* is not a known action kind.
            sqlite3.Error: If the row cannot be written.
        """
        if action not in ACTIONS:
            raise ValueError(f"unknown usage action '{action}'")
        entry = UsageLogEntry(
            action=action,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_estimated=estimate_cost(model, input_tokens, output_tokens),
            user_id=user_id,
            project_id=project_id,
        )
        entry.id = self._repo.add_usage(entry)
        logger.debug(
            "usage %s model=%s in=%d out=%d cost=%.6f",
            action,
            model,
            input_tokens,
            output_tokens,
            entry.cost_estimated,
        )
        return entry

    def monthly_count(self, user_id: str, action: str) -> int:
        """Number of *action* rows for *user_id* in the current UTC month."""
        return self._repo.count_usage(user_id, action, month_start(self._clock()))

    def totals(
        self,
        *,
        user_id: str | None = None,
        project_id: str | None = None,
        this_month: bool = False,
    ) -> list[dict]:
        """Per-action token and cost totals (see Repository.usage_totals)."""
        since = month_start(self._clock()) if this_month else None
        return self._repo.usage_totals(user_id=user_id, project_id=project_id, since=since)

    def cost_summary(
        self, *, user_id: str | None = None, project_id: str | None = None
    ) -> dict:
        """All-time totals plus a grand total, for display."""
        per_action = self.totals(user_id=user_id, project_id=project_id)
        return {
            "actions": per_action,
            "input_tokens": sum(row["input_tokens"] for row in per_action),
            "output_tokens": sum(row["output_tokens"] for row in per_action),
            "cost": round(sum(row["cost"] for row in per_action), 6),
        }
