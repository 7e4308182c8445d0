"""
tests/conftest.py -- Shared test fixtures for noteapp.

This module provides:
  - FakeClock: a controllable clock injected into TokenCodec and SessionService
  - auth_config / verifier / codec: core components with a fixed secret and
    the minimum bcrypt cost so hashing stays fast
  - db / user_store / token_store / service: a fully wired SessionService on
    a per-test SQLite file (a file, not :memory:, so worker threads in the
    concurrency tests all see the same database)
  - api_client: TestClient over the real FastAPI app with the lifespan
    patched to use an isolated database

The DEBUG env var must be set before any api/ import so get_settings() can
auto-generate SECRET_KEY in dev mode instead of raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from auth.hashing import CredentialVerifier
from auth.service import SessionService
from auth.store import Database, RefreshTokenStore, UserStore
from auth.tokens import TokenCodec
from core.config import AuthConfig, Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"
OTHER_SECRET = "another-secret-key-fedcba9876543210fedcba98"


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Core components
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(
        secret_key=TEST_SECRET,
        access_token_ttl=timedelta(minutes=15),
        refresh_token_ttl=timedelta(days=1),
        bcrypt_rounds=4,
        store_timeout=timedelta(seconds=30),
    )


@pytest.fixture
def verifier(auth_config: AuthConfig) -> CredentialVerifier:
    return CredentialVerifier(rounds=auth_config.bcrypt_rounds)


@pytest.fixture
def codec(auth_config: AuthConfig, clock: FakeClock) -> TokenCodec:
    return TokenCodec(auth_config, clock=clock)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture
def db(tmp_path) -> Generator[Database, None, None]:
    database = Database(f"sqlite:///{tmp_path / 'noteapp_test.db'}")
    yield database
    database.close()


@pytest.fixture
def user_store(db: Database) -> UserStore:
    return UserStore(db)


@pytest.fixture
def token_store(db: Database) -> RefreshTokenStore:
    return RefreshTokenStore(db)


@pytest.fixture
def service(
    user_store: UserStore,
    token_store: RefreshTokenStore,
    verifier: CredentialVerifier,
    codec: TokenCodec,
    auth_config: AuthConfig,
    clock: FakeClock,
) -> SessionService:
    return SessionService(
        credentials=user_store,
        tokens=token_store,
        verifier=verifier,
        codec=codec,
        config=auth_config,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, db: Database):
    """Return an async context manager that replaces the real lifespan.

    Wires a SessionService over the test database into app.state so
    TestClient routes never touch the default on-disk database. No purge
    task is started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        auth_config = settings.auth_config()
        user_store = UserStore(db)
        app.state.settings = settings
        app.state.auth_config = auth_config
        app.state.db = db
        app.state.user_store = user_store
        app.state.session_service = SessionService(
            credentials=user_store,
            tokens=RefreshTokenStore(db),
            verifier=CredentialVerifier(rounds=auth_config.bcrypt_rounds),
            codec=TokenCodec(auth_config),
            config=auth_config,
        )
        yield

    return test_lifespan


@pytest.fixture
def api_client(db: Database) -> Generator[TestClient, None, None]:
    """Yield a TestClient bound to an isolated database.

    base_url uses localhost so TrustedHostMiddleware accepts the requests.
    """
    from api.main import app

    settings = Settings(debug=True, secret_key=TEST_SECRET, bcrypt_rounds=4)
    app.router.lifespan_context = _patch_lifespan(settings, db)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client
