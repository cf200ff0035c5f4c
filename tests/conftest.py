"""
tests/conftest.py -- Shared test fixtures for the SIGL backend.

This module provides:
  - engine / user_store / credential_store: file-backed SQLite per test (tmp_path)
  - hasher / tokens / registration: service instances wired like production
  - api_client: TestClient over the real app with an isolated database
  - make_user / login: helpers for integration tests

Design: every test gets its own SQLite file under tmp_path, never plain
:memory:. TestClient runs sync route handlers in a thread pool and the
threaded lockout tests open several connections at once; a :memory: DB is
per-connection and would present a blank schema to each worker thread.

Environment must be set before any api/auth/core import: api.main reads
get_settings() at import time for TrustedHost and CORS.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-0123456789abcdef0123456789")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef012345678")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_services
from auth.passwords import PasswordHasher
from auth.registration import RegistrationCoordinator
from auth.store import CredentialStore
from auth.tokens import TokenService
from core.database import open_engine
from profiles.models import User
from profiles.store import UserStore

ACCESS_SECRET = os.environ["JWT_ACCESS_SECRET"]
REFRESH_SECRET = os.environ["JWT_REFRESH_SECRET"]
DEFAULT_PASSWORD = "Secret123!"

_counter = itertools.count(1)


# ---------------------------------------------------------------------------
# Rate limiter isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Generator[None, None, None]:
    """The limiter is process-wide; without a reset login tests trip each other's limits."""
    limiter.reset()
    yield


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path):
    eng = open_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def credential_store(engine) -> CredentialStore:
    return CredentialStore(engine)


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(ACCESS_SECRET, REFRESH_SECRET)


@pytest.fixture
def registration(user_store, credential_store, hasher) -> RegistrationCoordinator:
    return RegistrationCoordinator(user_store, credential_store, hasher)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(db_url: str):
    """Return an async context manager that replaces the real lifespan.

    Builds the same service graph as production against an isolated test
    database instead of the default SQLite file.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, db_url)
        yield
        app.state.engine.dispose()

    return test_lifespan


@pytest.fixture
def api_client(tmp_path) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with a fresh database per test.

    Function-scoped: lockout counters and refresh tokens are per-account
    state that must not leak between tests.
    """
    db_url = f"sqlite:///{tmp_path / 'api.db'}"
    app.router.lifespan_context = _patch_lifespan(db_url)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def make_user(api_client) -> Callable[..., User]:
    """Register a user through the app's own RegistrationCoordinator."""

    def _make(
        role: str = "APPRENTICE",
        email: str | None = None,
        username: str | None = None,
        password: str = DEFAULT_PASSWORD,
    ) -> User:
        n = next(_counter)
        return app.state.registration.register(
            username=username or f"user{n}",
            email=email or f"user{n}@example.org",
            password=password,
            role=role,
        )

    return _make


@pytest.fixture
def login(api_client) -> Callable[..., dict]:
    """POST /auth/login and return the token bundle; fails the test on non-200."""

    def _login(email: str, password: str = DEFAULT_PASSWORD) -> dict:
        resp = api_client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["tokens"]

    return _login
