"""
tests/conftest.py -- Shared test fixtures for Gatehouse unit and integration tests.

This module provides:
  - FakeClock / clock: a controllable "now" injected into every component
  - stores: isolated in-memory AccountStore + AnalyticsLog per test
  - notifier: an EmailNotifier that records messages instead of sending them
  - auth_service: AuthService wired from test Settings, the stores and the clock
  - make_account / login: helpers to create accounts and sign in over HTTP
  - api_client: TestClient whose lifespan installs the objects above

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each test
gets a uuid-suffixed name, so no state leaks between tests.

Environment variables must be set before any api/auth/core import:
get_settings() is cached on first use, and api/main.py reads it at import.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any gatehouse import so the cached Settings see them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "20/minute")
os.environ.setdefault("RESET_RATE_LIMIT", "5/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from analytics.store import AnalyticsLog
from api.limiter import limiter
from api.main import app
from auth.models import Account
from auth.service import AuthService
from auth.store import AccountStore
from core.config import Settings
from notify.email import EmailNotifier

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
PASSWORD = "correct-horse"


class FakeClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, start: datetime = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class RecordingNotifier(EmailNotifier):
    """EmailNotifier that records what it would send. No SMTP, no logging."""

    def __init__(self) -> None:
        super().__init__(frontend_url="http://app.test")
        self.sent: list[tuple[str, str]] = []
        self.reset_tokens: list[tuple[str, str]] = []

    def send_password_reset(self, to_email: str, token: str) -> bool:
        self.reset_tokens.append((to_email, token))
        return super().send_password_reset(to_email, token)

    def _send(self, to_email: str, subject: str, body: str, sensitive: bool = False) -> bool:
        self.sent.append((to_email, subject))
        return True


def make_settings(**overrides) -> Settings:
    """Settings for tests: real validation, fast bcrypt, fixed key."""
    values = {"secret_key": TEST_SECRET, "bcrypt_rounds": 4}
    values.update(overrides)
    return Settings(**values)


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stores() -> Generator[tuple[AccountStore, AnalyticsLog], None, None]:
    """Yield (AccountStore, AnalyticsLog) backed by fresh named in-memory DBs."""
    store = AccountStore(db_url=_memory_url("test_auth"))
    log = AnalyticsLog(db_url=_memory_url("test_analytics"))
    yield store, log
    log.close()
    store.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def auth_service(stores, clock, notifier, settings) -> AuthService:
    store, log = stores
    return AuthService.from_settings(settings, store, log, notifier=notifier, clock=clock)


@pytest.fixture
def make_account(auth_service: AuthService, clock: FakeClock) -> Callable[..., Account]:
    """Factory: create an account directly in the store and return it."""

    def _make(
        email: str = "alice@example.com",
        password: str = PASSWORD,
        role: str = "user",
        username: str | None = None,
    ) -> Account:
        account_id = auth_service.store.create_account(
            Account(
                email=email,
                username=username or email.split("@", 1)[0],
                role=role,
                hashed_password=auth_service.credentials.hash(password),
            ),
            now=clock(),
        )
        return auth_service.store.get_by_id(account_id)

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AccountStore, log: AnalyticsLog, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores and service into app.state so TestClient routes
    see isolated test DBs rather than the production databases.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        app.state.analytics_log = log
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture
def api_client(stores, auth_service) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with test stores and a fake clock.

    Function-scoped: lockout counters, sessions and rate-limit windows must
    not leak between tests.
    """
    store, log = stores
    app.router.lifespan_context = _patch_lifespan(store, log, auth_service)
    limiter.reset()
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def login(api_client: TestClient) -> Callable[..., object]:
    """Factory: POST /auth/login and return the response.

    device sets the User-Agent header, so each call can look like a new client.
    """

    def _login(email: str = "alice@example.com", password: str = PASSWORD, device: str = "pytest-agent", **body):
        payload = {"email": email, "password": password, **body}
        return api_client.post("/api/v1/auth/login", json=payload, headers={"User-Agent": device})

    return _login
