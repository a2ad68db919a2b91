"""
tests/conftest.py -- Shared test fixtures for Marquee.

This module provides:
  - db / users / tokens / permissions / movies: stores on a private in-memory DB
  - user_factory: creates a user (optionally activated, with permission codes)
    and returns it with a fresh authentication token
  - api: a TestClient harness wired to isolated stores, a mock mailer and a
    real BackgroundRunner

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI shares one in-memory instance across threads.

Environment must be set before any project import: DEBUG=true permits the
low bcrypt work factor that keeps the suite fast, and LIMITER_ENABLED=false
keeps rate limits from interfering with repeated calls.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from unittest.mock import MagicMock

# CRITICAL: set before any core/auth import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LIMITER_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_state
from auth.models import User
from auth.passwords import Password
from auth.permissions import PermissionStore
from auth.store import TokenStore, UserStore
from auth.tokens import SCOPE_AUTHENTICATION
from catalog.store import MovieStore
from core.background import BackgroundRunner
from core.database import Database

PASSWORD = "pa55word-123"

# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db() -> Generator[Database, None, None]:
    database = Database("sqlite:///:memory:")
    yield database
    database.close()


@pytest.fixture
def users(db: Database) -> UserStore:
    return UserStore(db)


@pytest.fixture
def tokens(db: Database) -> TokenStore:
    return TokenStore(db)


@pytest.fixture
def permissions(db: Database) -> PermissionStore:
    return PermissionStore(db)


@pytest.fixture
def movies(db: Database) -> MovieStore:
    return MovieStore(db)


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


def create_user(
    users: UserStore,
    tokens: TokenStore,
    permissions: PermissionStore,
    *codes: str,
    activated: bool = True,
    email: str | None = None,
) -> tuple[User, str]:
    """Insert a user, grant codes, and return (user, authentication token plaintext)."""
    user = User(
        name="Test User",
        email=email or unique_email(),
        password=Password.set(PASSWORD),
        activated=activated,
    )
    users.insert(user)
    if codes:
        permissions.add_for_user(user.id, *codes)
    token = tokens.new(user.id, timedelta(hours=1), SCOPE_AUTHENTICATION)
    return user, token.plaintext


@pytest.fixture
def user_factory(users: UserStore, tokens: TokenStore, permissions: PermissionStore):
    def _factory(*codes: str, activated: bool = True, email: str | None = None) -> tuple[User, str]:
        return create_user(users, tokens, permissions, *codes, activated=activated, email=email)

    return _factory


# ---------------------------------------------------------------------------
# API harness -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    state: object
    mailer: MagicMock
    runner: BackgroundRunner

    def make_user(self, *codes: str, activated: bool = True, email: str | None = None) -> tuple[User, str]:
        return create_user(
            self.state.users, self.state.tokens, self.state.permissions, *codes, activated=activated, email=email
        )

    @staticmethod
    def auth(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(db: Database, mailer: MagicMock, runner: BackgroundRunner):
    """Return a lifespan that wires test stores into app.state instead of the real ones.

    No purge task is started; token expiry is exercised directly in the store tests.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_state(app, db, mailer, runner)
        yield
        runner.shutdown()

    return test_lifespan


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiHarness, None, None]:
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    database = Database(f"sqlite:///file:test_{suffix}?mode=memory&cache=shared&uri=true")
    mailer = MagicMock()
    runner = BackgroundRunner(max_workers=2)

    app.router.lifespan_context = _patch_lifespan(database, mailer, runner)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield ApiHarness(client=client, state=app.state, mailer=mailer, runner=runner)

    database.close()
