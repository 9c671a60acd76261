"""
auth/tokens.py -- Access and refresh token signing and verification.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets from core.config.Settings [S2], and each carries a
       "type" claim, so neither kind can be presented as the other.

  Access tokens: {sub, type, iat, exp}. Short-lived (15 minutes by default)
       and never persisted anywhere.

  Refresh tokens: {sub, sid, type, iat, exp}. Long-lived (7 days by default).
       sid is a fresh 128-bit random session id (secrets.token_hex(16)). Only
       the sid is stored server-side, in the user's session set; the signed
       token itself is never stored. A valid signature proves we issued the
       token, the session set decides whether it is still usable.

  Verification distinguishes TokenExpired (signature fine, past exp) from
       TokenInvalid (anything else) so callers can report a precise cause.
       jose checks the signature before the claims, so an expired result
       always means the signature verified.

Layer rule: no imports from notify/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import RefreshClaims, TokenPair
from core.config import Settings, get_settings

logger = logging.getLogger("sessionauth.tokens")

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"


def new_session_id() -> str:
    """Return a fresh 128-bit session id, hex-encoded (32 chars)."""
    return secrets.token_hex(16)


class TokenSigner:
    """Issues and verifies access/refresh tokens.

    Pure functions over configuration-held secrets: no I/O, no shared state.

    Usage:
        signer = TokenSigner(get_settings())
        token, sid = signer.issue_refresh_token(user.id)
        claims = signer.verify_refresh_token(token)
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._access_secret = settings.access_token_secret
        self._refresh_secret = settings.refresh_token_secret
        self.access_ttl = timedelta(seconds=settings.access_token_ttl_seconds)
        self.refresh_ttl = timedelta(seconds=settings.refresh_token_ttl_seconds)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, user_id: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "type": _ACCESS,
            "iat": now,
            "exp": now + self.access_ttl,
        }
        return jwt.encode(payload, self._access_secret, algorithm=_ALGORITHM)

    def issue_refresh_token(self, user_id: str) -> tuple[str, str]:
        """Return (signed_token, session_id).

        The caller registers session_id with the SessionRegistry; the token
        goes to the client.
        """
        session_id = new_session_id()
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "sid": session_id,
            "type": _REFRESH,
            "iat": now,
            "exp": now + self.refresh_ttl,
        }
        return jwt.encode(payload, self._refresh_secret, algorithm=_ALGORITHM), session_id

    def issue_pair(self, user_id: str) -> tuple[TokenPair, str]:
        """Issue an access + refresh pair. Returns (pair, refresh_session_id)."""
        refresh_token, session_id = self.issue_refresh_token(user_id)
        return TokenPair(self.issue_access_token(user_id), refresh_token), session_id

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_refresh_token(self, token: str, verify_expiry: bool = True) -> RefreshClaims:
        """Verify a refresh token and return its claims.

        Raises TokenExpired if the signature is valid but exp has passed, and
        TokenInvalid for any other failure. With verify_expiry=False only
        the signature and claim shape are checked -- logout uses this so an
        expired token can still revoke its own session.
        """
        payload = self._decode(token, self._refresh_secret, verify_expiry)
        if payload.get("type") != _REFRESH or not payload.get("sid"):
            raise TokenInvalid("not a refresh token")
        return RefreshClaims(user_id=payload["sub"], session_id=payload["sid"])

    def verify_access_token(self, token: str) -> str:
        """Verify an access token and return its subject (the user id)."""
        payload = self._decode(token, self._access_secret, True)
        if payload.get("type") != _ACCESS:
            raise TokenInvalid("not an access token")
        return payload["sub"]

    def _decode(self, token: str, secret: str, verify_expiry: bool) -> dict:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": verify_expiry},
            )
        except ExpiredSignatureError as exc:
            raise TokenExpired("token expired") from exc
        except JWTError as exc:
            raise TokenInvalid("token did not verify") from exc
        if not isinstance(payload.get("sub"), str) or not payload["sub"]:
            raise TokenInvalid("missing subject")
        return payload
