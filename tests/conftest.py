"""
tests/conftest.py -- Shared fixtures for LoginGuard tests.

This module provides:
  - clock: a ManualClock pinned to the current wall-clock time. Starting at
    "now" rather than a fixed date keeps JWT exp claims valid for python-jose,
    which checks them against the real clock.
  - hasher: bcrypt at the minimum cost factor so the suite stays fast.
  - credential_store / session_store: in-memory SQLite stores, one per test.
  - file_db_url: a tmp-file SQLite URL for tests that touch the store from
    several threads. Plain ':memory:' gives every thread its own blank DB.

DEBUG and HASH_ROUNDS must be set before any core import so get_settings()
auto-generates SECRET_KEY instead of raising ValueError, and so components
built with default settings (the CLI) also hash at low cost.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from datetime import datetime, timezone

# CRITICAL: Set before any core/otp/sessions import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("HASH_ROUNDS", "4")

import pytest

from core.clock import ManualClock
from core.hashing import Hasher
from otp.issuer import CredentialIssuer
from otp.store import CredentialStore
from sessions.store import SessionStore
from sessions.tokens import JoseSigner, TokenPairIssuer

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class CountingHasher(Hasher):
    """Hasher that counts bcrypt verifications (real and dummy)."""

    def __init__(self, rounds: int = 4) -> None:
        super().__init__(rounds=rounds)
        self.verify_calls = 0

    def verify(self, plain: str, hashed: str) -> bool:
        self.verify_calls += 1
        return super().verify(plain, hashed)


class Principals:
    """Stand-in for the external identity store's read-only existence check."""

    def __init__(self) -> None:
        self.known: set[uuid.UUID] = set()

    def add(self) -> uuid.UUID:
        pid = uuid.uuid4()
        self.known.add(pid)
        return pid

    def exists(self, principal_id: uuid.UUID) -> bool:
        return principal_id in self.known


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime.now(timezone.utc))


@pytest.fixture
def hasher() -> CountingHasher:
    return CountingHasher()


@pytest.fixture
def credential_store() -> Generator[CredentialStore, None, None]:
    store = CredentialStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def session_store(clock, hasher) -> Generator[SessionStore, None, None]:
    store = SessionStore("sqlite:///:memory:", hasher=hasher, clock=clock, max_sessions=2)
    yield store
    store.close()


@pytest.fixture
def file_db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'loginguard_test.db'}"


@pytest.fixture
def code_issuer(credential_store, hasher, clock) -> CredentialIssuer:
    return CredentialIssuer(credential_store, hasher=hasher, clock=clock, code_length=6, code_ttl_seconds=300)


@pytest.fixture
def principals() -> Principals:
    return Principals()


@pytest.fixture
def signer() -> JoseSigner:
    return JoseSigner(secret_key="t" * 64, issuer="loginguard-test", audience="loginguard-test-users")


@pytest.fixture
def token_issuer(session_store, principals, signer, clock) -> TokenPairIssuer:
    return TokenPairIssuer(
        session_store,
        principal_exists=principals.exists,
        signer=signer,
        clock=clock,
        access_ttl_seconds=900,
        rotate_refresh_secrets=False,
    )
