"""
tests/conftest.py -- Shared test fixtures for Larek auth tests.

This module provides:
  - store-level fixtures (user_store, registry, issuer, credentials, service)
    over a throwaway SQLite file per test
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient over the real FastAPI app with isolated stores
  - make_user: insert an account directly, bypassing registration

Design: file-backed SQLite under tmp_path rather than :memory:. Route handlers
run in TestClient's thread pool and the rotation race tests spawn their own
threads; a file database gives every thread the same data and real write
locking, which is exactly what the rotation tests need to exercise.

Environment must be set before any core/auth/api import so get_settings()
sees it: DEBUG generates secrets, BCRYPT_ROUNDS=4 keeps hashing fast,
LOGIN_RATE_LIMIT is raised so the suite never trips the limiter, and
"testserver" (TestClient's Host header) is an allowed host.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any core/auth/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_services
from auth.credentials import CredentialStore, hash_password
from auth.models import Role, UserAccount
from auth.service import SessionService
from auth.sessions import SessionRegistry
from auth.store import UserStore, create_store_engine
from auth.tokens import TokenIssuer

TEST_ROUNDS = 4
ACCESS_SECRET = "a" * 40
REFRESH_SECRET = "r" * 40
DIGEST_SECRET = "d" * 40


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _insert_user(
    store: UserStore,
    email: str = "ann@example.com",
    password: str = "secret1",
    roles: set[str] | None = None,
    password_hash: str | None = None,
) -> int:
    """Insert an account directly and return its id."""
    account = UserAccount(
        email=email,
        password_hash=password_hash or hash_password(password, TEST_ROUNDS),
        roles=roles if roles is not None else {Role.customer.value},
        display_name="Ann",
    )
    return store.create_user(account)


@pytest.fixture
def make_user():
    """Return the account-insert helper: make_user(store, email, password, roles, password_hash) -> id."""
    return _insert_user


# ---------------------------------------------------------------------------
# Store-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'auth.db'}"


@pytest.fixture
def engine(db_url):
    eng = create_store_engine(db_url)
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine=engine)


@pytest.fixture
def registry(engine) -> SessionRegistry:
    return SessionRegistry(engine, digest_secret=DIGEST_SECRET)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)


@pytest.fixture
def credentials(user_store) -> CredentialStore:
    return CredentialStore(user_store, bcrypt_rounds=TEST_ROUNDS)


@pytest.fixture
def service(user_store, credentials, issuer, registry) -> SessionService:
    return SessionService(user_store, credentials, issuer, registry)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(db_url: str):
    """Return an async context manager that replaces the real lifespan.

    Wires stores over the test database into app.state through the same
    build_services() production uses. The purge_task is a long-sleeping
    coroutine so shutdown has a real asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, db_url)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        app.state.user_store.close()

    return test_lifespan


@pytest.fixture
def api_client(db_url) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with a fresh database per test."""
    app.router.lifespan_context = _patch_lifespan(db_url)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
