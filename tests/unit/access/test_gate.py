"""Tests for tier gating and monthly limits."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from stackmemory.access.gate import UsageGate
from stackmemory.access.usage import UsageLedger
from stackmemory.db.models import User
from stackmemory.errors import FeatureForbidden, Unauthorized

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def ledger(repo):
    return UsageLedger(repo)


@pytest.fixture
def gate(repo, ledger):
    return UsageGate(repo, ledger)


def _user(repo, **kw) -> User:
    user = User(id=kw.pop("id", "u"), **kw)
    repo.add_user(user)
    return repo.get_user(user.id)


def _use(ledger, user, action, times):
    for _ in range(times):
        ledger.record(action, "gemini/gemini-2.0-flash", 10, 10, user_id=user.id)


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("tier, elevated", [("free", False), ("pro", True), ("founder", True)])
def test_elevated_tiers(repo, gate, tier, elevated):
    assert gate.is_elevated(_user(repo, tier=tier)) is elevated


def test_active_trial_is_elevated(repo, ledger):
    gate = UsageGate(repo, ledger, clock=lambda: NOW)
    user = _user(repo, pro_trial_ends_at="2026-10-20T00:00:00Z")
    assert gate.is_elevated(user)
    assert gate.limit_for(user, "chat") == 500


def test_expired_trial_is_not_elevated(repo, ledger):
    gate = UsageGate(repo, ledger, clock=lambda: NOW)
    user = _user(repo, pro_trial_ends_at="2026-10-01 00:00:00")
    assert not gate.is_elevated(user)


def test_garbage_trial_date_is_not_elevated(repo, gate):
    assert not gate.is_elevated(_user(repo, pro_trial_ends_at="next tuesday"))


# ---------------------------------------------------------------------------
# Capability features
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("feature", ["search", "multimodal"])
def test_free_users_cannot_use_pro_features(repo, gate, feature):
    user = _user(repo, tier="free")
    assert not gate.check_access(user, feature)
    with pytest.raises(FeatureForbidden) as exc_info:
        gate.require(user, feature)
    assert exc_info.value.status_code == 403
    assert "Pro" in exc_info.value.user_message


def test_multimodal_message_names_media(repo, gate):
    with pytest.raises(FeatureForbidden) as exc_info:
        gate.require(_user(repo), "multimodal")
    assert exc_info.value.user_message.startswith("Image and video analysis")


def test_pro_users_pass_capability_checks(repo, gate):
    user = _user(repo, tier="pro")
    gate.require(user, "search")
    gate.require(user, "multimodal")


def test_unknown_feature(repo, gate):
    with pytest.raises(ValueError):
        gate.check_access(_user(repo), "teleport")


# ---------------------------------------------------------------------------
# Metered features
# ---------------------------------------------------------------------------


def test_free_chat_limit_is_twenty(repo, ledger, gate):
    user = _user(repo)
    _use(ledger, user, "chat", 19)
    gate.require(user, "chat")
    _use(ledger, user, "chat", 1)
    assert not gate.check_access(user, "chat")
    with pytest.raises(FeatureForbidden) as exc_info:
        gate.require(user, "chat")
    assert "(20/20)" in exc_info.value.user_message


def test_custom_limit_replaces_tier_default(repo, ledger, gate):
    user = _user(repo, tier="pro", custom_limit_insight=2)
    _use(ledger, user, "insight", 2)
    assert gate.limit_for(user, "insight") == 2
    assert not gate.check_access(user, "insight")


def test_custom_limit_can_raise_free_tier(repo, ledger, gate):
    user = _user(repo, custom_limit_chat=100)
    _use(ledger, user, "chat", 25)
    assert gate.check_access(user, "chat")


def test_other_actions_do_not_count(repo, ledger, gate):
    user = _user(repo)
    _use(ledger, user, "embedding", 50)
    assert gate.usage_for(user, "chat").current == 0


def test_last_months_usage_does_not_count(repo, gate):
    from stackmemory.db.models import UsageLogEntry

    user = _user(repo)
    repo.add_usage(
        UsageLogEntry(
            action="insight", model="m", input_tokens=1, output_tokens=1,
            cost_estimated=0.0, user_id=user.id, created_at="2000-01-31 23:59:59",
        )
    )
    assert gate.check_access(user, "insight")


def test_usage_counters(repo, ledger, gate):
    user = _user(repo)
    _use(ledger, user, "chat", 3)
    counters = gate.usage(user)
    assert counters["chat"].to_dict() == {"current": 3, "limit": 20}
    assert counters["chat"].remaining == 17
    assert counters["insight"].to_dict() == {"current": 0, "limit": 1}


def test_profile_missing_is_unauthorized(gate):
    with pytest.raises(Unauthorized):
        gate.profile("ghost")
