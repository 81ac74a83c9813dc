"""Caller authentication.

Two strategies resolve a caller to an Identity:
  - SessionAuthenticator: browser session cookie (``stackmemory_session``)
  - TokenAuthenticator:   ``Authorization: Bearer <token>`` for CLI / API use

Both look up the sha256 hash of the presented secret in ``credentials``; raw
secrets are shown once at issue time and never stored.
"""

from __future__ import annotations

import hashlib
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass

from stackmemory.db.repository import Repository
from stackmemory.errors import Unauthorized

SESSION_COOKIE = "stackmemory_session"

CREDENTIAL_KINDS: frozenset[str] = frozenset(["session", "api"])


@dataclass(frozen=True)
class Identity:
    user_id: str
    method: str  # session | token


@dataclass(frozen=True)
class Credentials:
    """Raw secrets presented with one request; either may be absent."""

    session_token: str | None = None
    bearer_token: str | None = None

    @classmethod
    def from_headers(
        cls, session_cookie: str | None, authorization: str | None
    ) -> Credentials:
        bearer = None
        if authorization:
            scheme, _, value = authorization.partition(" ")
            if scheme.lower() == "bearer" and value.strip():
                bearer = value.strip()
        return cls(session_token=session_cookie or None, bearer_token=bearer)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(
    repo: Repository,
    user_id: str,
    kind: str = "api",
    *,
    label: str = "",
    expires_at: str | None = None,
) -> str:
    """Create a credential for *user_id* and return the raw secret (shown once)."""
    if kind not in CREDENTIAL_KINDS:
        raise ValueError(f"unknown credential kind '{kind}'")
    token = secrets.token_urlsafe(32)
    repo.add_credential(hash_token(token), user_id, kind, label=label, expires_at=expires_at)
    return token


class Authenticator(ABC):
    """Resolves presented credentials to an Identity, or None if not applicable."""

    @abstractmethod
    def authenticate(self, credentials: Credentials) -> Identity | None: ...


class SessionAuthenticator(Authenticator):
    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def authenticate(self, credentials: Credentials) -> Identity | None:
        if not credentials.session_token:
            return None
        user_id = self._repo.find_credential_user(hash_token(credentials.session_token), "session")
        return Identity(user_id=user_id, method="session") if user_id else None


class TokenAuthenticator(Authenticator):
    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def authenticate(self, credentials: Credentials) -> Identity | None:
        if not credentials.bearer_token:
            return None
        user_id = self._repo.find_credential_user(hash_token(credentials.bearer_token), "api")
        return Identity(user_id=user_id, method="token") if user_id else None


class CompositeAuthenticator(Authenticator):
    """Tries each strategy in order; the first identity wins."""

    def __init__(self, strategies: list[Authenticator]) -> None:
        self._strategies = strategies

    @classmethod
    def default(cls, repo: Repository) -> CompositeAuthenticator:
        return cls([SessionAuthenticator(repo), TokenAuthenticator(repo)])

    def authenticate(self, credentials: Credentials) -> Identity | None:
        for strategy in self._strategies:
            identity = strategy.authenticate(credentials)
            if identity is not None:
                return identity
        return None

    def require(self, credentials: Credentials) -> Identity:
        """Return the caller's identity.

        Raises:
            Unauthorized: If no strategy accepts the credentials.
        """
        identity = self.authenticate(credentials)
        if identity is None:
            raise Unauthorized("no valid session cookie or bearer token")
        return identity
