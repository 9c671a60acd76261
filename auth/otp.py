"""
auth/otp.py -- One-time password-reset codes.

OTPs are short, numeric and short-lived. They only need to resist guessing
inside their validity window, so uniform digits from secrets.randbelow are
plenty; there is no fixed or special-cased value on the normal path.

The one deterministic escape hatch is Settings.otp_test_code, which core/
config.py refuses to accept unless DEBUG=true [S3].

A stored code whose expiry has passed is treated exactly like no code.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.models import User
from auth.store import UserStore
from core.config import Settings, get_settings

logger = logging.getLogger("sessionauth.otp")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_numeric_code(length: int) -> str:
    """Return `length` uniformly random digits. Leading zeros are kept."""
    if length < 1:
        raise ValueError("OTP length must be positive")
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


class OtpIssuer:
    """Issues, attaches and checks password-reset codes.

    clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(
        self,
        store: UserStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        settings = settings or get_settings()
        self._store = store
        self._clock = clock
        self.length = settings.otp_length
        self.ttl = timedelta(seconds=settings.otp_ttl_seconds)
        self._test_code = settings.otp_test_code if settings.debug else ""
        if self._test_code:
            logger.warning("OTP_TEST_CODE is set -- reset codes are fixed. Development use only.")

    def issue(self, length: int | None = None) -> str:
        if self._test_code:
            return self._test_code
        return generate_numeric_code(length or self.length)

    def attach_to_user(self, user: User, code: str, ttl: timedelta | None = None) -> datetime:
        """Store code on the user with expiry now + ttl. Returns the expiry."""
        expires_at = self._clock() + (ttl if ttl is not None else self.ttl)
        self._store.set_reset_otp(user.id, code, expires_at)
        user.reset_otp = code
        user.reset_otp_expires_at = expires_at
        return expires_at

    def clear(self, user: User) -> None:
        self._store.clear_reset_otp(user.id)
        user.reset_otp = None
        user.reset_otp_expires_at = None

    def is_expired(self, user: User) -> bool:
        expires_at = user.reset_otp_expires_at
        return expires_at is None or self._clock() >= expires_at

    def verify(self, user: User, supplied: str) -> bool:
        """True iff supplied matches the stored code and the code has not expired."""
        if not user.reset_otp or self.is_expired(user):
            return False
        return hmac.compare_digest(user.reset_otp.encode("utf-8"), supplied.encode("utf-8"))
