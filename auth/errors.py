"""
auth/errors.py -- Error taxonomy for the authentication core.

Lower layers raise these; AuthService catches them at its boundary and turns
them into an AuthResult envelope. Every AuthError carries a caller-safe
message -- anything sensitive belongs in the log, never in .message.

TokenInvalid / TokenExpired are raised by the signer only. They are kept
separate from Unauthenticated so callers of TokenSigner can tell the two
causes apart; the service maps both to Unauthenticated.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    validation_error = "validation_error"
    conflict = "conflict"
    unauthenticated = "unauthenticated"
    not_found = "not_found"
    invalid_or_expired_otp = "invalid_or_expired_otp"
    internal = "internal"


class AuthError(Exception):
    kind: ErrorKind = ErrorKind.internal
    default_message: str = "An internal error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(AuthError):
    kind = ErrorKind.validation_error
    default_message = "Invalid request."


class Conflict(AuthError):
    kind = ErrorKind.conflict
    default_message = "User already exists with this email or username."


class Unauthenticated(AuthError):
    kind = ErrorKind.unauthenticated
    default_message = "Invalid credentials."


class NotFound(AuthError):
    kind = ErrorKind.not_found
    default_message = "User not found."


class InvalidOrExpiredOtp(AuthError):
    kind = ErrorKind.invalid_or_expired_otp
    default_message = "Invalid or expired OTP."


class InternalError(AuthError):
    kind = ErrorKind.internal


# ---------------------------------------------------------------------------
# Signer errors
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base for refresh/access token verification failures."""


class TokenInvalid(TokenError):
    """Signature, structure or claims did not verify."""


class TokenExpired(TokenError):
    """Signature verified but the token is past its expiry."""


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------


class DuplicateUserError(Exception):
    """Raised by UserStore.create_user when email or username is taken."""
