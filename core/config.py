"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for SessionAuth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() or
accept a Settings instance in the constructor.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates signing secrets with a warning, production
      mode refuses to start without them.

Security notes:
  [S1] Signing secrets shorter than 32 chars are rejected. HS256 relies on
       key entropy -- a short key weakens every token issued with it.

  [S2] Access and refresh tokens must be signed with different secrets so an
       access token can never be replayed as a refresh token.

  [S3] otp_test_code (a fixed, predictable OTP) is only accepted when
       DEBUG=true. A production process with the override set fails at
       startup instead of issuing guessable reset codes.

Layer rule: core/ is the kernel. It may not import from auth/ or notify/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sessionauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'sessionauth.db'}"

OTP_DELIVERY_POLICIES = ("email_required", "any_channel", "all_channels")


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env file.

    All fields have defaults so Settings(debug=True) can be instantiated in
    test environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL
    store_timeout_seconds: int = 10

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the "not configured" sentinel; the validator either
    # generates dev keys or raises, so callers never see "".
    access_token_secret: str = ""
    refresh_token_secret: str = ""
    access_token_ttl_seconds: int = 15 * 60
    refresh_token_ttl_seconds: int = 7 * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    password_hash_rounds: int = 10
    revoke_sessions_on_password_reset: bool = False

    # ------------------------------------------------------------------
    # OTP
    # ------------------------------------------------------------------

    otp_ttl_seconds: int = 10 * 60
    otp_length: int = 6
    otp_delivery_policy: str = "email_required"
    otp_test_code: str = ""  # [S3] debug only

    # ------------------------------------------------------------------
    # Email (SMTP). Empty smtp_host means email is logged, not sent.
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_from: str = ""
    smtp_timeout_seconds: int = 10

    # ------------------------------------------------------------------
    # SMS (Courier HTTP API). Empty sms_auth_token means SMS is disabled.
    # ------------------------------------------------------------------

    sms_api_url: str = "https://api.courier.com/send"
    sms_auth_token: str = ""
    sms_default_country_code: str = "+971"
    sms_timeout_seconds: int = 10

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy [S1] [S2].

        Dev mode (DEBUG=true): a missing secret is auto-generated with a
            warning. Tokens will not survive a restart.

        Production mode: a missing secret is a hard startup failure.
        """
        for field in ("access_token_secret", "refresh_token_secret"):
            value = getattr(self, field)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{field.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                setattr(self, field, secrets.token_hex(32))
                logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", field.upper())
            elif len(value) < 32:
                raise ValueError(f"{field.upper()} must be at least 32 characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        return self

    @model_validator(mode="after")
    def validate_otp(self) -> "Settings":
        """Reject OTP settings that would make reset codes guessable [S3]."""
        if self.otp_test_code:
            if not self.debug:
                raise ValueError("OTP_TEST_CODE may only be set when DEBUG=true.")
            if not self.otp_test_code.isdigit():
                raise ValueError("OTP_TEST_CODE must contain digits only.")
        if not 4 <= self.otp_length <= 10:
            raise ValueError("OTP_LENGTH must be between 4 and 10.")
        if self.otp_delivery_policy not in OTP_DELIVERY_POLICIES:
            raise ValueError(f"OTP_DELIVERY_POLICY must be one of {', '.join(OTP_DELIVERY_POLICIES)}.")
        if not 4 <= self.password_hash_rounds <= 31:
            raise ValueError("PASSWORD_HASH_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
