"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, minimal logic). Stores and the
service do the work; these classes own the domain shape.

Layer rule: no imports from notify/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """The identity record this core reads and writes.

    email is stored lower-cased; the store enforces uniqueness on both email
    and username.

    active_refresh_token_ids holds one session id per live refresh-token
    grant, in creation order. Membership is the only authority on whether a
    refresh token is still usable -- the token's signature proves it was
    issued by us, not that it was not revoked since.

    reset_otp and reset_otp_expires_at are always set and cleared together.
    """

    username: str
    email: str
    password_hash: str
    id: str | None = None
    phone_number: str | None = None
    active_refresh_token_ids: list[str] = field(default_factory=list)
    reset_otp: str | None = None
    reset_otp_expires_at: datetime | None = None
    last_login_at: datetime | None = None
    created_at: datetime | None = None

    def public_profile(self) -> dict:
        """Return the fields safe to hand back to a caller.

        Never includes password_hash, session ids or OTP state.
        """
        return {
            "userId": self.id,
            "username": self.username,
            "email": self.email,
            "phoneNumber": self.phone_number,
            "lastLoginAt": self.last_login_at.isoformat() if self.last_login_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class RefreshClaims:
    """Verified contents of a refresh token."""

    user_id: str
    session_id: str

