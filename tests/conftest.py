"""
tests/conftest.py -- Shared test fixtures for Campus RBAC.

This module provides:
  - user_store / rbac_store: fresh plain in-memory stores for unit tests
  - make_user / make_settings: factories for users and Settings overrides
  - seeded_stores: both stores after a default-catalog bootstrap
  - _make_test_stores(): named shared-memory stores for TestClient tests
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus the bootstrap admin's bearer token and id

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for TestClient because route handlers run in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Unit tests run on one thread, so plain :memory: is fine there.

Environment variables must be set before any application import:
  DEBUG=true         -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4    -- bcrypt's minimum cost keeps the suite fast
  ALLOWED_HOSTS      -- TestClient sends Host: testserver
  LOGIN_RATE_LIMIT   -- read once at import; API tests reset the counters per test
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set these before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "5/minute")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.credentials import hash_password
from auth.models import User
from auth.store import UserStore
from auth.tokens import Claims, issue_token
from core.config import Settings
from rbac.bootstrap import initialize_rbac
from rbac.store import RBACStore

ADMIN_EMAIL = "system@university.edu"
ADMIN_PASSWORD = "bootstrap-pass-123"  # nosec B105 -- test fixture credential


def _settings(**overrides) -> Settings:
    """Settings with a known fallback-admin password unless overridden."""
    values = {"fallback_admin_password": ADMIN_PASSWORD}
    values.update(overrides)
    return Settings(**values)


def _add_user(store: UserStore, email: str, role: str, password: str = "password123", **fields) -> User:
    """Create a user and return it as read back from the store."""
    uid = store.create_user(User(email=email, role=role, hashed_password=hash_password(password), **fields))
    return store.get_by_id(uid)


@pytest.fixture
def make_user():
    """Factory: make_user(store, email, role, password="password123", **fields) -> User."""
    return _add_user


@pytest.fixture
def make_settings():
    """Factory: make_settings(**overrides) -> Settings with ADMIN_PASSWORD as the fallback password."""
    return _settings


# ---------------------------------------------------------------------------
# Unit-test stores
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url="sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def rbac_store() -> Generator[RBACStore, None, None]:
    store = RBACStore(db_url="sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def seeded_stores(rbac_store: RBACStore, user_store: UserStore) -> tuple[RBACStore, UserStore]:
    """Both stores after one default-catalog bootstrap run."""
    initialize_rbac(rbac_store, user_store, settings=_settings())
    return rbac_store, user_store


# ---------------------------------------------------------------------------
# API test stores
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, RBACStore]:
    """Create named shared-memory stores on one database, like production.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (the test module name).
    """
    url = f"sqlite:///file:test_campus_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=url), RBACStore(db_url=url)


def _patch_lifespan(user_store: UserStore, rbac_store: RBACStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.rbac_store = rbac_store
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request: pytest.FixtureRequest) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, admin_id) for API integration tests.

    The default catalog is bootstrapped before the client starts, so the
    fallback admin exists with role "Super Admin" and password ADMIN_PASSWORD.
    Each test module gets its own database. Tests reach the stores through
    client.app.state.
    """
    user_store, rbac_store = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])
    initialize_rbac(rbac_store, user_store, settings=_settings())
    admin = user_store.get_by_email(ADMIN_EMAIL)
    token = issue_token(Claims(user_id=admin.id, email=admin.email, role=admin.role), ttl=3600)

    app.router.lifespan_context = _patch_lifespan(user_store, rbac_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    rbac_store.close()
    user_store.close()
