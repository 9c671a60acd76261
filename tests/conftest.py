"""
tests/conftest.py -- Shared fixtures for the SessionAuth test suite.

This module provides:
  - settings: debug-mode Settings with fixed secrets and a low bcrypt cost
  - store: isolated in-memory UserStore per test
  - sender: RecordingSender standing in for both email and SMS providers
  - clock: FakeClock so OTP expiry can be tested without sleeping
  - service: AuthService wired from the fixtures above

Design: each UserStore builds its own engine on sqlite:///:memory:, so every
test gets a blank database. All tests run on one thread, which is what the
in-memory SQLite pool expects.

password_hash_rounds=4 is bcrypt's minimum cost -- it keeps the suite fast
without changing any code path.
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from auth.service import AuthService
from auth.store import UserStore
from core.config import Settings
from notify.dispatcher import DeliveryPolicy, OtpDispatcher

ACCESS_SECRET = "test-access-secret-0123456789abcdef"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingSender:
    """Message sender that records every message instead of delivering it.

    email_ok / sms_ok control what the sender reports back, so tests can
    simulate a failing channel.
    """

    def __init__(self, email_ok: bool = True, sms_ok: bool = True) -> None:
        self.email_ok = email_ok
        self.sms_ok = sms_ok
        self.emails: list[tuple[str, str, str]] = []
        self.sms: list[tuple[str, str]] = []

    def send_email(self, address: str, subject: str, body: str, html: Optional[str] = None) -> bool:
        self.emails.append((address, subject, body))
        return self.email_ok

    def send_sms(self, address: str, body: str) -> bool:
        self.sms.append((address, body))
        return self.sms_ok


class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    """Build debug Settings without reading .env; overrides win."""
    values = {
        "debug": True,
        "access_token_secret": ACCESS_SECRET,
        "refresh_token_secret": REFRESH_SECRET,
        "password_hash_rounds": 4,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_service(
    store: UserStore,
    settings: Settings,
    sender: RecordingSender,
    clock: FakeClock,
    policy: DeliveryPolicy = DeliveryPolicy.EMAIL_REQUIRED,
) -> AuthService:
    dispatcher = OtpDispatcher(sender, sender, policy)
    return AuthService(store, settings, dispatcher=dispatcher, clock=clock)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(store: UserStore, settings: Settings, sender: RecordingSender, clock: FakeClock) -> AuthService:
    return make_service(store, settings, sender, clock)


@pytest.fixture
def alice(service: AuthService) -> dict:
    """Register alice and return the result data (ids and tokens)."""
    result = service.register("alice", "alice@example.com", "pass123")
    assert result.status, result.message
    return result.data
