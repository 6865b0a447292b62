"""
tests/helpers.py -- Constants, fakes and builders shared by the test modules.

Fixtures live in conftest.py; everything a test module imports by name lives
here.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from auth.errors import MailDeliveryError
from auth.models import Role, User
from auth.store import UserStore
from core.config import Settings

START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

SECRET = "test-secret-key-0123456789abcdef0123456789abcdef"

# Fixed 20-character alphanumeric ids so paths match the gate's {id} matcher.
USER_ID = "U1aaaaaaaaaaaaaaaaaa"
OTHER_USER_ID = "U2bbbbbbbbbbbbbbbbbb"
ADMIN_ID = "A1cccccccccccccccccc"
SUPER_ID = "S1dddddddddddddddddd"

USER_EMAIL = "a@b.com"
OTHER_EMAIL = "other@b.com"
ADMIN_EMAIL = "admin@b.com"
SUPER_EMAIL = "root@b.com"

_CODE_RE = re.compile(r"sign-in code is: (\d+)")


class FakeClock:
    """Callable clock for TokenService. Starts at START, moves only when told."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class RecordingMailer:
    """MailDispatcher that keeps every message in memory."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append((to, subject, body))

    def last_code(self) -> int:
        _to, _subject, body = self.sent[-1]
        match = _CODE_RE.search(body)
        assert match, f"no login code in mail body: {body!r}"
        return int(match.group(1))


class FailingMailer:
    def send(self, to: str, subject: str, body: str) -> None:
        raise MailDeliveryError()


def memory_url(prefix: str) -> str:
    """Unique named shared-memory SQLite URL so tests never share rows."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    values = {"debug": True, "secret_key": SECRET, "database_url": "sqlite://"}
    values.update(overrides)
    return Settings(**values)


def seed_users(store: UserStore) -> None:
    store.create_user(User(id=USER_ID, email=USER_EMAIL, name="Ann User", roles={Role.USER}))
    store.create_user(User(id=OTHER_USER_ID, email=OTHER_EMAIL, name="Bob Other", roles={Role.USER}))
    store.create_user(User(id=ADMIN_ID, email=ADMIN_EMAIL, name="Ada Admin", roles={Role.ADMIN}))
    store.create_user(
        User(id=SUPER_ID, email=SUPER_EMAIL, name="Sam Super", roles={Role.ADMIN, Role.SUPER_ADMIN})
    )


@dataclass
class ApiHarness:
    client: TestClient
    store: UserStore
    clock: FakeClock
    mailer: RecordingMailer
    settings: Settings

    def login(self, email: str) -> dict:
        """Run pre-login + login; the client keeps the cookie and bearer header."""
        resp = self.client.post("/api/v1/auth/pre-login", json={"email": email})
        assert resp.status_code == 200, resp.text
        resp = self.client.post(
            "/api/v1/auth/login",
            json={"email": email, "code": self.mailer.last_code()},
        )
        assert resp.status_code == 200, resp.text
        self.client.headers["Authorization"] = resp.headers["Authorization"]
        return resp.json()

    def refresh_cookie(self) -> str | None:
        return self.client.cookies.get(self.settings.refresh_cookie_name)
