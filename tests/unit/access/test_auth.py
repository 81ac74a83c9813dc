"""Tests for session and bearer authentication."""

from __future__ import annotations

import pytest

from stackmemory.access.auth import (
    CompositeAuthenticator,
    Credentials,
    hash_token,
    issue_token,
)
from stackmemory.db.models import User
from stackmemory.errors import Unauthorized


@pytest.fixture
def auth(repo):
    return CompositeAuthenticator.default(repo)


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc123", "abc123"),
        ("bearer   abc123 ", "abc123"),
        ("Basic abc123", None),
        ("Bearer ", None),
        (None, None),
    ],
)
def test_bearer_parsing(header, expected):
    assert Credentials.from_headers(None, header).bearer_token == expected


def test_empty_cookie_is_absent():
    assert Credentials.from_headers("", None).session_token is None


def test_issued_token_is_stored_hashed(repo, user):
    token = issue_token(repo, user.id)
    row = repo.conn.execute("SELECT token_hash FROM credentials").fetchone()
    assert row["token_hash"] == hash_token(token)
    assert token not in row["token_hash"]


def test_bearer_token_authenticates(repo, user, auth):
    token = issue_token(repo, user.id, "api")
    identity = auth.require(Credentials(bearer_token=token))
    assert identity.user_id == user.id
    assert identity.method == "token"


def test_session_cookie_authenticates(repo, user, auth):
    token = issue_token(repo, user.id, "session")
    identity = auth.require(Credentials(session_token=token))
    assert identity.method == "session"


def test_session_secret_is_not_a_bearer_token(repo, user, auth):
    token = issue_token(repo, user.id, "session")
    assert auth.authenticate(Credentials(bearer_token=token)) is None


def test_session_wins_over_bearer(repo, user, auth):
    repo.add_user(User(id="other"))
    session = issue_token(repo, user.id, "session")
    bearer = issue_token(repo, "other", "api")
    identity = auth.require(Credentials(session_token=session, bearer_token=bearer))
    assert identity.user_id == user.id


def test_expired_token_rejected(repo, user, auth):
    token = issue_token(repo, user.id, expires_at="2001-01-01 00:00:00")
    with pytest.raises(Unauthorized):
        auth.require(Credentials(bearer_token=token))


def test_missing_credentials_rejected(auth):
    with pytest.raises(Unauthorized) as exc_info:
        auth.require(Credentials())
    assert exc_info.value.status_code == 401


def test_unknown_kind_rejected(repo, user):
    with pytest.raises(ValueError):
        issue_token(repo, user.id, "password")
