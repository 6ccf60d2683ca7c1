"""
tests/conftest.py -- Shared test fixtures for Natours unit and integration tests.

This module provides:
  - FakeClock / RecordingMailer: deterministic collaborators for flow tests
  - credentials: CredentialManager at bcrypt's minimum cost with a fixed key
  - user_store / catalog_store: isolated in-memory stores per test
  - make_user(): factory that persists a user with a known password
  - api_client: TestClient wired to isolated stores via a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient fixtures because route handlers run in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

DEBUG, RATE_LIMIT_ENABLED and ALLOWED_HOSTS must be set before any app import:
get_settings() is cached on first call and the limiter and middleware read it
at import time.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: configure the environment before any core/auth/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("EMAIL_BACKEND", "console")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.mailer import MailerError
from auth.models import User
from auth.store import UserStore
from auth.tokens import CredentialManager
from catalog.store import CatalogStore

TEST_SECRET = "natours-test-secret-key-0123456789abcdef"
TEST_PASSWORD = "pass1234"

_db_counter = itertools.count()


# ---------------------------------------------------------------------------
# Deterministic collaborators
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock for CredentialManager.

    Follows real time (plus any advance() offset) until set() freezes it at an
    exact instant. The store stamps password_changed_at with the real clock,
    so an unfrozen FakeClock keeps freshly issued tokens consistent with it.
    """

    def __init__(self) -> None:
        self._offset = timedelta(0)
        self._frozen: datetime | None = None

    def __call__(self) -> datetime:
        if self._frozen is not None:
            return self._frozen
        return datetime.now(timezone.utc) + self._offset

    def advance(self, **kwargs) -> None:
        if self._frozen is not None:
            self._frozen += timedelta(**kwargs)
        else:
            self._offset += timedelta(**kwargs)

    def set(self, value: datetime) -> None:
        self._frozen = value


class RecordingMailer:
    """Mailer that records every message; set fail=True to simulate an outage."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []  # (kind, email, url)
        self.fail = False

    def send_welcome(self, user: User, url: str) -> None:
        self._record("welcome", user, url)

    def send_password_reset(self, user: User, url: str) -> None:
        self._record("reset", user, url)

    def _record(self, kind: str, user: User, url: str) -> None:
        if self.fail:
            raise MailerError("simulated outage")
        self.sent.append((kind, user.email, url))

    def last_url(self, kind: str) -> str:
        return [url for k, _, url in self.sent if k == kind][-1]


def _shared_memory_url(name: str) -> str:
    return f"sqlite:///file:{name}_{next(_db_counter)}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def credentials(clock: FakeClock) -> CredentialManager:
    """CredentialManager with bcrypt at its minimum cost (4) so tests stay fast."""
    return CredentialManager(
        secret_key=TEST_SECRET,
        token_expire_seconds=3600,
        reset_token_expire_seconds=600,
        bcrypt_rounds=4,
        clock=clock,
    )


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(_shared_memory_url("users"))
    yield store
    store.close()


@pytest.fixture
def catalog_store() -> Generator[CatalogStore, None, None]:
    store = CatalogStore(_shared_memory_url("catalog"))
    yield store
    store.close()


@pytest.fixture
def make_user(user_store: UserStore, credentials: CredentialManager) -> Callable[..., User]:
    """Factory: make_user(role="guide") persists a user whose password is TEST_PASSWORD."""
    counter = itertools.count(1)

    def _make(role: str = "user", email: str | None = None, name: str = "Test User") -> User:
        n = next(counter)
        user = User(
            name=name,
            email=email or f"{role}{n}@example.com",
            role=role,
            hashed_password=credentials.hash_password(TEST_PASSWORD),
        )
        user_store.create_user(user)
        return user

    return _make


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, catalog: CatalogStore, credentials: CredentialManager, mailer):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.catalog = catalog
        app.state.credentials = credentials
        app.state.mailer = mailer
        yield

    return test_lifespan


@pytest.fixture
def api_client(
    user_store: UserStore,
    catalog_store: CatalogStore,
    credentials: CredentialManager,
    mailer: RecordingMailer,
) -> Generator[TestClient, None, None]:
    """TestClient on the real app with isolated stores, fast credentials and a recording mailer.

    Function-scoped: each test starts with empty databases.
    """
    app.router.lifespan_context = _patch_lifespan(user_store, catalog_store, credentials, mailer)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
