"""
auth/schemas.py -- Input structs and the result envelope for AuthService.

Every public AuthService operation validates its arguments through one of
the request models below before touching the store. Pydantic owns shape
checks (required, type, length); the field validators own the format rules
(email shape, password strength).

AuthResult is the uniform envelope every operation returns. It keeps the
typed ErrorKind for Python callers and serializes to the wire shape
{status, data?, message} via to_envelope().
"""

from __future__ import annotations

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from auth.errors import ErrorKind, ValidationFailed

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_MIN_LENGTH = 6

_LETTER_RE = re.compile(r"[A-Za-z]")
_DIGIT_RE = re.compile(r"\d")

# Messages users actually see. Kept here so tests can assert on them.
MSG_REQUIRED = "Username, email and password are required."
MSG_BAD_EMAIL = "Invalid email format."
MSG_WEAK_PASSWORD = "Password must be at least 6 characters and contain at least one letter and one number."


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def is_strong_password(password: str) -> bool:
    """Min length 6, at least one letter and one digit."""
    return (
        len(password) >= PASSWORD_MIN_LENGTH
        and _LETTER_RE.search(password) is not None
        and _DIGIT_RE.search(password) is not None
    )


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


# Secrets are taken verbatim; surrounding whitespace is part of the password.
_VERBATIM_FIELDS = frozenset({"password", "new_password"})


class _Request(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("*", mode="before")
    @classmethod
    def strip_identity_fields(cls, value: Any, info: ValidationInfo) -> Any:
        if isinstance(value, str) and info.field_name not in _VERBATIM_FIELDS:
            return value.strip()
        return value


def _normalize_email(value: str) -> str:
    value = value.lower()
    if not is_valid_email(value):
        raise ValueError(MSG_BAD_EMAIL)
    return value


def _check_password(value: str) -> str:
    if not is_strong_password(value):
        raise ValueError(MSG_WEAK_PASSWORD)
    # bcrypt only looks at the first 72 bytes.
    if len(value.encode("utf-8")) > 72:
        raise ValueError("Password must be at most 72 bytes.")
    return value


class RegisterRequest(_Request):
    username: str = Field(min_length=1, max_length=64)
    email: str = Field(min_length=1, max_length=254)
    # bcrypt truncates at 72 bytes; cap well below any abuse threshold.
    password: str = Field(min_length=1, max_length=72)
    phone_number: Optional[str] = Field(default=None, max_length=32)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _check_password(value)


class LoginRequest(_Request):
    # No strength check here: a weak stored password must still be able to log in.
    email: str = Field(min_length=1, max_length=254)
    password: str = Field(min_length=1, max_length=72)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _normalize_email(value)


class RefreshRequest(_Request):
    refresh_token: str = Field(min_length=1, max_length=4096)


class LogoutRequest(_Request):
    user_id: str = Field(min_length=1, max_length=64)
    refresh_token: str = Field(min_length=1, max_length=4096)


class UserRef(_Request):
    """Payload for operations keyed only by user id (logout_all, me)."""

    user_id: str = Field(min_length=1, max_length=64)


class ForgotPasswordRequest(_Request):
    email: str = Field(min_length=1, max_length=254)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _normalize_email(value)


class ResetPasswordRequest(_Request):
    user_id: str = Field(min_length=1, max_length=64)
    otp: str = Field(min_length=1, max_length=16)
    new_password: str = Field(min_length=1, max_length=72)

    @field_validator("new_password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _check_password(value)


def parse_request(model: type[_Request], **fields: Any) -> Any:
    """Build a request model, converting pydantic errors to ValidationFailed.

    None values are passed through so a missing field is reported as
    missing rather than silently defaulted.
    """
    try:
        return model(**fields)
    except ValidationError as exc:
        raise ValidationFailed(_first_error_message(exc)) from exc


def _first_error_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request."
    first = errors[0]
    field_name = ".".join(str(p) for p in first.get("loc", ())) or "request"
    if first.get("type") in ("missing", "string_type", "string_too_short"):
        return f"{field_name} is required."
    if first.get("type") == "value_error":
        # field_validator messages are our own caller-safe strings.
        return str(first.get("ctx", {}).get("error", first.get("msg", "Invalid request.")))
    return f"{field_name}: {first.get('msg', 'invalid value')}."


# ---------------------------------------------------------------------------
# Result envelope
# ---------------------------------------------------------------------------


class AuthResult(BaseModel):
    """Uniform outcome of every AuthService operation."""

    model_config = ConfigDict(frozen=True)

    status: bool
    message: str
    data: Optional[dict[str, Any]] = None
    error: Optional[ErrorKind] = None

    @classmethod
    def ok(cls, message: str, data: Optional[dict[str, Any]] = None) -> "AuthResult":
        return cls(status=True, message=message, data=data)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> "AuthResult":
        return cls(status=False, message=message, error=kind)

    def to_envelope(self) -> dict[str, Any]:
        """Serialize to {status, data?, message}. data is omitted when None."""
        envelope: dict[str, Any] = {"status": self.status, "message": self.message}
        if self.data is not None:
            envelope["data"] = self.data
        return envelope
