"""Tier-based feature gate with monthly usage limits.

Tiers: free, pro, founder. ``pro`` and ``founder`` (and any user inside an
active pro trial) are *elevated*.

  feature      free   elevated
  chat          20      500      per calendar month (UTC)
  insight        1       50      per calendar month (UTC)
  search         -       yes     capability only
  multimodal     -       yes     capability only

A user's custom limit replaces the tier default. Current usage is the count
of ledger rows for the feature this month; the ledger write after a
successful action is the increment.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from stackmemory.access.usage import UsageLedger
from stackmemory.db.models import User
from stackmemory.db.repository import Repository
from stackmemory.errors import FeatureForbidden, Unauthorized

logger = logging.getLogger(__name__)

TIERS: tuple[str, ...] = ("free", "pro", "founder")
ELEVATED_TIERS: frozenset[str] = frozenset(["pro", "founder"])

METERED_FEATURES: tuple[str, ...] = ("chat", "insight")
ELEVATED_FEATURES: frozenset[str] = frozenset(["search", "multimodal"])

_FREE_LIMITS: dict[str, int] = {"chat": 20, "insight": 1}
_ELEVATED_LIMITS: dict[str, int] = {"chat": 500, "insight": 50}

_UPGRADE_HINT = "Upgrade to Pro to unlock it."


@dataclass
class FeatureUsage:
    feature: str
    current: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current)

    def to_dict(self) -> dict:
        return {"current": self.current, "limit": self.limit}


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class UsageGate:
    """Answers "may this user use this feature now?".

    Args:
        repo: Open repository (profiles).
        ledger: Usage ledger (monthly counts).
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        repo: Repository,
        ledger: UsageLedger,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repo
        self._ledger = ledger
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def profile(self, user_id: str) -> User:
        """Return the user's profile.

        Raises:
            Unauthorized: If the identity has no profile row.
        """
        user = self._repo.get_user(user_id)
        if user is None:
            raise Unauthorized(f"identity '{user_id}' has no profile")
        return user

    def is_elevated(self, user: User) -> bool:
        if user.tier in ELEVATED_TIERS:
            return True
        if user.pro_trial_ends_at:
            try:
                return _parse_timestamp(user.pro_trial_ends_at) > self._clock()
            except ValueError:
                logger.warning("Unparseable pro_trial_ends_at for %s: %r", user.id, user.pro_trial_ends_at)
        return False

    def limit_for(self, user: User, feature: str) -> int:
        custom = {"chat": user.custom_limit_chat, "insight": user.custom_limit_insight}.get(feature)
        if custom is not None:
            return custom
        limits = _ELEVATED_LIMITS if self.is_elevated(user) else _FREE_LIMITS
        return limits[feature]

    def usage_for(self, user: User, feature: str) -> FeatureUsage:
        return FeatureUsage(
            feature=feature,
            current=self._ledger.monthly_count(user.id, feature),
            limit=self.limit_for(user, feature),
        )

    def usage(self, user: User) -> dict[str, FeatureUsage]:
        """Current-month counters for every metered feature."""
        return {feature: self.usage_for(user, feature) for feature in METERED_FEATURES}

    def check_access(self, user: User, feature: str) -> bool:
        """Return True if *user* may use *feature* right now."""
        if feature in ELEVATED_FEATURES:
            return self.is_elevated(user)
        if feature in METERED_FEATURES:
            usage = self.usage_for(user, feature)
            return usage.current < usage.limit
        raise ValueError(f"unknown feature '{feature}'")

    def require(self, user: User, feature: str) -> None:
        """Raise FeatureForbidden unless check_access(user, feature) holds."""
        if feature in ELEVATED_FEATURES:
            if not self.is_elevated(user):
                label = "Image and video analysis" if feature == "multimodal" else feature.title()
                raise FeatureForbidden(
                    f"user {user.id} (tier {user.tier}) requested {feature}",
                    user_message=f"{label} is a Pro feature. {_UPGRADE_HINT}",
                )
            return

        usage = self.usage_for(user, feature)
        if usage.current >= usage.limit:
            raise FeatureForbidden(
                f"user {user.id} reached {feature} limit {usage.current}/{usage.limit}",
                user_message=(
                    f"You have reached your {feature} limit for this month "
                    f"({usage.limit}/{usage.limit}). Upgrade to Pro for more."
                ),
            )
