"""
tests/conftest.py -- Shared test fixtures for the benefits auth test suite.

This module provides:
  - clock / settings / mailer / store fixtures for unit tests
  - seeded_store: a store holding two users, an admin and a super admin with
    fixed 20-character ids (see tests/helpers.py)
  - api: an ApiHarness around a TestClient over the real app, wired to an
    isolated seeded store through a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers and the gate in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG and LOGIN_RATE_LIMIT must be set before any api/auth/core import so the
process-wide Settings built by api.main can be created without a SECRET_KEY
and the login rate limit never trips during the suite.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, init_auth
from auth.store import UserStore
from core.config import Settings
from tests.helpers import ApiHarness, FakeClock, RecordingMailer, make_settings, memory_url, seed_users

# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    user_store = UserStore(db_url=memory_url("test_auth"))
    yield user_store
    user_store.close()


@pytest.fixture
def seeded_store(store: UserStore) -> UserStore:
    seed_users(store)
    return store


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: UserStore, mailer, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store, mailer and clock into app.state through the same
    init_auth() the real lifespan uses.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_auth(app, settings, store, mailer=mailer, clock=clock)
        yield

    return test_lifespan


@pytest.fixture
def api(clock: FakeClock, mailer: RecordingMailer) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness over the real FastAPI app and an isolated seeded store."""
    settings = make_settings()
    user_store = UserStore(db_url=memory_url("test_api"))
    seed_users(user_store)
    limiter.reset()

    app.router.lifespan_context = _patch_lifespan(settings, user_store, mailer, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, store=user_store, clock=clock, mailer=mailer, settings=settings)

    user_store.close()
