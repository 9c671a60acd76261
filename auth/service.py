"""
auth/service.py -- The authentication orchestrator.

AuthService composes the signer, password hasher, session registry, OTP
issuer and OTP dispatcher into the public operations:

  register, login, refresh, logout, logout_all, forgot_password,
  verify_otp_and_reset, me

Contract: every public method returns an AuthResult and never raises.
Component failures are raised as AuthError subclasses inside the _run()
boundary and mapped onto the envelope there; anything unexpected becomes an
"internal" result whose details only reach the log.

Session state machine (per refresh-token session id):
  Anonymous --login/register--> Authenticated(sid)
  Authenticated(sid) --refresh--> Revoked(sid) + Authenticated(sid')
  Authenticated(sid) --logout / logout_all--> Revoked(sid)
A Revoked sid never comes back; presenting its token is Unauthenticated.

Security:
  [C1] login() always runs one bcrypt comparison, against a synthetic hash
       when the email is unknown, and returns the same error for unknown
       email and wrong password.
  [C2] Refresh tokens are single use. The rotation is a conditional
       delete-then-insert in one transaction, so a replayed or concurrently
       used token fails instead of minting a second session.
  [C3] A reset code is consumed by a conditional UPDATE that also replaces
       the password hash, so it can succeed at most once.
  [C4] A login's session id and its last_login_at stamp commit in one
       transaction; a failed login leaves no session behind.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from auth.errors import (
    AuthError,
    Conflict,
    DuplicateUserError,
    ErrorKind,
    InternalError,
    InvalidOrExpiredOtp,
    NotFound,
    TokenError,
    TokenExpired,
    Unauthenticated,
)
from auth.models import TokenPair, User
from auth.otp import OtpIssuer
from auth.passwords import PasswordHasher
from auth.schemas import (
    AuthResult,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserRef,
    parse_request,
)
from auth.sessions import SessionRegistry
from auth.store import UserStore, new_user_id
from auth.tokens import TokenSigner
from core.config import Settings, get_settings
from notify.dispatcher import DeliveryPolicy, OtpDispatcher
from notify.senders import build_senders

logger = logging.getLogger("sessionauth.service")

INTERNAL_MESSAGE = "An internal error occurred."
OTP_SEND_FAILED_MESSAGE = "Failed to send OTP. Please try again."
INVALID_REFRESH_MESSAGE = "Invalid refresh token."
EXPIRED_REFRESH_MESSAGE = "Refresh token expired."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """Public entry point for the authentication core.

    Usage:
        service = AuthService(UserStore(settings.database_url), settings)
        result = service.login("alice@example.com", "pass123")
        if result.status:
            tokens = result.data
    """

    def __init__(
        self,
        store: UserStore,
        settings: Settings | None = None,
        dispatcher: OtpDispatcher | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        settings = settings or get_settings()
        self.settings = settings
        self._store = store
        self._clock = clock
        self.signer = TokenSigner(settings)
        self.hasher = PasswordHasher(settings.password_hash_rounds)
        self.sessions = SessionRegistry(store)
        self.otp = OtpIssuer(store, settings, clock)
        if dispatcher is None:
            email_sender, sms_sender = build_senders(settings)
            dispatcher = OtpDispatcher(
                email_sender,
                sms_sender,
                DeliveryPolicy(settings.otp_delivery_policy),
                ttl_minutes=max(1, settings.otp_ttl_seconds // 60),
            )
        self.dispatcher = dispatcher

    # ------------------------------------------------------------------
    # Boundary
    # ------------------------------------------------------------------

    def _run(self, operation: str, fn: Callable[[], AuthResult]) -> AuthResult:
        """Execute fn and convert every failure into an AuthResult."""
        try:
            return fn()
        except AuthError as exc:
            if exc.kind is ErrorKind.internal:
                logger.error("%s failed: %s", operation, exc.message)
            else:
                logger.info("%s rejected: %s", operation, exc.kind.value)
            return AuthResult.fail(exc.kind, exc.message)
        except Exception:
            logger.exception("%s failed with an unexpected error", operation)
            return AuthResult.fail(ErrorKind.internal, INTERNAL_MESSAGE)

    def _load_user(self, user_id: str) -> User:
        user = self._store.get_by_id(user_id)
        if user is None:
            raise NotFound()
        return user

    @staticmethod
    def _token_data(user: User, pair: TokenPair) -> dict[str, Any]:
        return {
            "userId": user.id,
            "username": user.username,
            "email": user.email,
            "accessToken": pair.access_token,
            "refreshToken": pair.refresh_token,
        }

    # ------------------------------------------------------------------
    # Register / login
    # ------------------------------------------------------------------

    def register(self, username: str, email: str, password: str, phone_number: str | None = None) -> AuthResult:
        def _register() -> AuthResult:
            req: RegisterRequest = parse_request(
                RegisterRequest,
                username=username,
                email=email,
                password=password,
                phone_number=phone_number or None,
            )
            if self._store.find_user_by_email_or_username(req.email, req.username) is not None:
                raise Conflict()

            user = User(
                id=new_user_id(),
                username=req.username,
                email=req.email,
                password_hash=self.hasher.hash(req.password),
                phone_number=req.phone_number,
            )
            pair, session_id = self.signer.issue_pair(user.id)
            self.sessions.stage_session(user, session_id)
            try:
                self._store.create_user(user)
            except DuplicateUserError:
                # Lost a race with a concurrent registration of the same identity.
                raise Conflict() from None
            logger.info("Registered user %s", user.id)
            return AuthResult.ok("User registered successfully.", self._token_data(user, pair))

        return self._run("register", _register)

    def login(self, email: str, password: str) -> AuthResult:
        def _login() -> AuthResult:
            req: LoginRequest = parse_request(LoginRequest, email=email, password=password)
            user = self._store.get_by_email(req.email)
            if user is None:
                self.hasher.verify_dummy(req.password)  # [C1]
                raise Unauthenticated()
            if not self.hasher.verify(req.password, user.password_hash):
                raise Unauthenticated()

            pair, session_id = self.signer.issue_pair(user.id)
            # Sessions are additive across devices; earlier ones stay live.
            if not self.sessions.register_session(user, session_id, login_at=self._clock()):  # [C4]
                raise InternalError("Could not record the new session.")
            logger.info("User %s logged in (%d active sessions)", user.id, len(user.active_refresh_token_ids))
            return AuthResult.ok("Login successful.", self._token_data(user, pair))

        return self._run("login", _login)

    # ------------------------------------------------------------------
    # Refresh / logout
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> AuthResult:
        def _refresh() -> AuthResult:
            req: RefreshRequest = parse_request(RefreshRequest, refresh_token=refresh_token)
            try:
                claims = self.signer.verify_refresh_token(req.refresh_token)
            except TokenExpired:
                raise Unauthenticated(EXPIRED_REFRESH_MESSAGE) from None
            except TokenError:
                raise Unauthenticated(INVALID_REFRESH_MESSAGE) from None

            user = self._store.get_by_id(claims.user_id)
            if user is None or not self.sessions.is_session_active(user, claims.session_id):
                raise Unauthenticated(INVALID_REFRESH_MESSAGE)

            # Sign before committing: if signing fails the record is untouched.
            pair, new_session_id = self.signer.issue_pair(user.id)
            if not self.sessions.rotate_session(user, claims.session_id, new_session_id):  # [C2]
                logger.warning("Refresh token for user %s was used concurrently", user.id)
                raise Unauthenticated(INVALID_REFRESH_MESSAGE)
            return AuthResult.ok(
                "Token refreshed successfully.",
                {"accessToken": pair.access_token, "refreshToken": pair.refresh_token},
            )

        return self._run("refresh", _refresh)

    def logout(self, user_id: str, refresh_token: str) -> AuthResult:
        """Revoke the session behind refresh_token.

        Expiry is not checked: an expired token still identifies the session
        it belongs to, and revoking it is always safe. Only a token that
        fails signature verification, or belongs to someone else, is refused.
        """

        def _logout() -> AuthResult:
            req: LogoutRequest = parse_request(LogoutRequest, user_id=user_id, refresh_token=refresh_token)
            try:
                claims = self.signer.verify_refresh_token(req.refresh_token, verify_expiry=False)
            except TokenError:
                raise Unauthenticated(INVALID_REFRESH_MESSAGE) from None
            if claims.user_id != req.user_id:
                raise Unauthenticated(INVALID_REFRESH_MESSAGE)

            user = self._load_user(req.user_id)
            self.sessions.revoke_session(user, claims.session_id)
            return AuthResult.ok("Logout successful.")

        return self._run("logout", _logout)

    def logout_all(self, user_id: str) -> AuthResult:
        def _logout_all() -> AuthResult:
            req: UserRef = parse_request(UserRef, user_id=user_id)
            user = self._load_user(req.user_id)
            revoked = self.sessions.revoke_all_sessions(user)
            logger.info("Revoked %d sessions for user %s", revoked, user.id)
            return AuthResult.ok("All sessions logged out successfully.")

        return self._run("logout_all", _logout_all)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> AuthResult:
        def _forgot_password() -> AuthResult:
            req: ForgotPasswordRequest = parse_request(ForgotPasswordRequest, email=email)
            user = self._store.get_by_email(req.email)
            if user is None:
                raise NotFound("User not found with this email.")

            code = self.otp.issue()
            self.otp.attach_to_user(user, code)
            report = self.dispatcher.dispatch(user.email, user.phone_number, code)
            if not report.delivered:
                # Nobody received the code; do not leave a live one behind.
                self.otp.clear(user)
                raise InternalError(OTP_SEND_FAILED_MESSAGE)
            logger.info("Reset code issued for user %s (email=%s sms=%s)", user.id, report.email_sent, report.sms_sent)
            return AuthResult.ok("OTP sent successfully.", {"userId": user.id})

        return self._run("forgot_password", _forgot_password)

    def verify_otp_and_reset(self, user_id: str, otp: str, new_password: str) -> AuthResult:
        def _verify_otp_and_reset() -> AuthResult:
            req: ResetPasswordRequest = parse_request(
                ResetPasswordRequest, user_id=user_id, otp=otp, new_password=new_password
            )
            user = self._load_user(req.user_id)
            if not self.otp.verify(user, req.otp):
                raise InvalidOrExpiredOtp()

            new_hash = self.hasher.hash(req.new_password)
            if not self._store.reset_password(user.id, new_hash, req.otp):  # [C3]
                raise InvalidOrExpiredOtp()
            user.password_hash = new_hash
            user.reset_otp = None
            user.reset_otp_expires_at = None

            if self.settings.revoke_sessions_on_password_reset:
                revoked = self.sessions.revoke_all_sessions(user)
                logger.info("Password reset revoked %d sessions for user %s", revoked, user.id)
            logger.info("Password reset for user %s", user.id)
            return AuthResult.ok("Password has been reset successfully.")

        return self._run("verify_otp_and_reset", _verify_otp_and_reset)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def me(self, user_id: str) -> AuthResult:
        def _me() -> AuthResult:
            req: UserRef = parse_request(UserRef, user_id=user_id)
            user = self._load_user(req.user_id)
            return AuthResult.ok("User information retrieved successfully.", user.public_profile())

        return self._run("me", _me)
