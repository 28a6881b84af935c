"""
tests/conftest.py -- Shared test fixtures for Market auth tests.

This module provides:
  - store / sessions / credentials / accounts: services over a throwaway DB,
    with SessionStore driven by a FrozenClock (tests/helpers.py)
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - api: TestClient plus an admin and a regular user for API integration tests

Each fixture gets its own SQLite file under tmp_path. Background expiry
updates run on an executor thread while the test thread keeps reading, and
file databases in WAL mode let those overlap; shared-cache :memory: databases
fail such readers with "table is locked" instead of waiting.

The DEBUG and BCRYPT_ROUNDS env vars must be set before any auth/core import
so the first get_settings() call sees them.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set before any auth/core import; get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.accounts import Accounts, NewUserParams
from auth.credentials import CredentialManager
from auth.models import Access
from auth.sessions import SessionStore
from auth.store import AuthStore
from core.config import Settings
from tests.helpers import (
    ADMIN_EMAIL,
    ADMIN_PASSWORD,
    USER_EMAIL,
    USER_PASSWORD,
    FrozenClock,
    make_settings,
)

# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store(tmp_path) -> Generator[AuthStore, None, None]:
    s = AuthStore(f"sqlite:///{tmp_path / 'auth.db'}")
    yield s
    s.close()


@pytest.fixture
def sessions(store: AuthStore, settings: Settings, clock: FrozenClock) -> Generator[SessionStore, None, None]:
    s = SessionStore(store, settings, clock=clock)
    yield s
    s.shutdown()


@pytest.fixture
def credentials(store: AuthStore) -> CredentialManager:
    return CredentialManager(store, rounds=4)


@pytest.fixture
def accounts(store: AuthStore, credentials: CredentialManager) -> Accounts:
    return Accounts(store, credentials)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AuthStore, sessions: SessionStore, credentials: CredentialManager, accounts: Accounts):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test services into app.state so TestClient routes see
    the isolated test DB rather than the configured one. No sweep task runs.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = store
        app.state.sessions = sessions
        app.state.credentials = credentials
        app.state.accounts = accounts
        app.state.sweep_task = None
        yield

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    sessions: SessionStore
    store: AuthStore
    admin_id: str
    user_id: str

    def login(self, email: str, password: str, remember_me: bool = False):
        """POST /auth/login, then wait for the superseded session's expiry task."""
        resp = self.client.post(
            "/api/v1/auth/login",
            json={"email": email, "password": password, "remember_me": remember_me},
        )
        self.sessions.drain(timeout=5)
        return resp


@pytest.fixture
def api(tmp_path) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext over a fresh database with one admin and one user.

    base_url is https so the Secure session cookie is sent back by the client.
    """
    settings = make_settings()
    store = AuthStore(f"sqlite:///{tmp_path / 'api.db'}")
    credentials = CredentialManager(store, rounds=4)
    accounts = Accounts(store, credentials)
    sessions = SessionStore(store, settings)

    admin_id = accounts.new_admin(NewUserParams(name="Market Admin", email=ADMIN_EMAIL), ADMIN_PASSWORD)
    user_id = accounts.new_user_with_password(
        NewUserParams(name="Regular Shopper", email=USER_EMAIL, access=Access.USER), USER_PASSWORD
    )

    app.router.lifespan_context = _patch_lifespan(store, sessions, credentials, accounts)

    with TestClient(app, base_url="https://testserver", raise_server_exceptions=True) as client:
        yield ApiContext(client=client, sessions=sessions, store=store, admin_id=admin_id, user_id=user_id)

    sessions.shutdown()
    store.close()
