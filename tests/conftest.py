"""
tests/conftest.py -- Shared test fixtures for PortalAuth unit and integration tests.

This module provides:
  - FakeClock / clock: a controllable UTC clock for expiry tests
  - RecordingNotifier / notifier: captures outgoing mail, can be told to fail
  - hasher: bcrypt at the minimum cost factor so tests stay fast
  - memory_users / memory_sessions: in-process directory and session adapters
  - sqlite_url: a fresh named shared-memory SQLite URI per test
  - api: TestClient over the real app with test stores wired into app.state

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.errors import NotificationError
from auth.federated import FederatedIdentityBridge
from auth.hashing import BcryptHasher
from auth.memory import InMemorySessionStore, InMemoryUserStore
from auth.reset import PasswordResetCoordinator
from auth.service import Authenticator
from auth.sessions import SqlSessionStore
from auth.store import UserStore

# Rate limits are covered by slowapi itself; with them on, a test module
# doing more than five registrations from "testclient" would start failing.
limiter.enabled = False

BASE_URL = "http://localhost:5000"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class SentMail:
    to_address: str
    subject: str
    body_text: str
    body_html: str


@dataclass
class RecordingNotifier:
    """Notifier that keeps every message instead of delivering it."""

    fail: bool = False
    sent: list[SentMail] = field(default_factory=list)

    def send(self, to_address: str, subject: str, body_text: str, body_html: str) -> None:
        if self.fail:
            raise NotificationError()
        self.sent.append(SentMail(to_address, subject, body_text, body_html))


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(scope="session")
def hasher() -> BcryptHasher:
    return BcryptHasher(rounds=4)


@pytest.fixture
def memory_users(clock: FakeClock) -> InMemoryUserStore:
    return InMemoryUserStore(clock=clock)


@pytest.fixture
def memory_sessions(clock: FakeClock) -> InMemorySessionStore:
    return InMemorySessionStore(ttl_seconds=7 * 24 * 60 * 60, clock=clock)


@pytest.fixture
def sqlite_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Integration fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    users: UserStore
    sessions: SqlSessionStore
    notifier: RecordingNotifier
    oauth: MagicMock


def _patch_lifespan(
    user_store: UserStore,
    session_store: SqlSessionStore,
    notifier: RecordingNotifier,
    hasher: BcryptHasher,
    oauth: MagicMock,
):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the production database. The OAuth
    registry is a MagicMock so no provider is ever contacted.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        authenticator = Authenticator(user_store, session_store, hasher)
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.authenticator = authenticator
        app.state.reset_coordinator = PasswordResetCoordinator(
            user_store,
            notifier,
            hasher,
            base_url=BASE_URL,
            sessions=session_store,
        )
        app.state.federated_bridge = FederatedIdentityBridge(user_store, authenticator)
        app.state.oauth = oauth
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api(sqlite_url: str, hasher: BcryptHasher) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around a TestClient with fresh stores.

    base_url uses "localhost" so TrustedHostMiddleware accepts the requests.
    follow_redirects=False so OAuth tests can assert on redirect locations.
    """
    user_store = UserStore(db_url=sqlite_url)
    session_store = SqlSessionStore(engine=user_store.engine, ttl_seconds=3600)
    recording = RecordingNotifier()
    oauth = MagicMock()

    app.router.lifespan_context = _patch_lifespan(user_store, session_store, recording, hasher, oauth)

    with TestClient(
        app,
        base_url="http://localhost",
        follow_redirects=False,
        raise_server_exceptions=True,
    ) as client:
        yield ApiHarness(client, user_store, session_store, recording, oauth)

    session_store.close()
    user_store.close()
