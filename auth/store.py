"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_user is the mapper. The service and registry never touch SQL.

Atomicity:
  The session set lives in its own table (user_sessions), one row per live
  refresh-token grant. Every change to it is a single statement or a single
  engine.begin() transaction -- nothing reads the set, edits a copy and
  writes it back. Two concurrent refreshes of the same token both issue
  DELETE ... WHERE session_id = :old; exactly one of them hits a row, and
  only that one inserts a replacement (rotate_session). A login's new
  session id and its last_login_at stamp commit together (record_login).

  OTP consumption is a conditional UPDATE ... WHERE reset_otp = :expected,
  so a code can reset the password at most once even under concurrency.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps are stored as fixed-width UTC ISO 8601 strings so they sort and
compare lexicographically.

Layer rule: no imports from notify/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    or_,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateUserError
from auth.models import User

logger = logging.getLogger("sessionauth.store")

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex
    Column("username", String(64), nullable=False),
    Column("email", String(254), nullable=False, unique=True),  # stored lower-cased
    Column("password_hash", Text, nullable=False),
    Column("phone_number", String(32)),
    Column("reset_otp", String(16)),
    Column("reset_otp_expires_at", String(32)),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

# Usernames are unique regardless of case.
Index("ix_users_username_lower", func.lower(_users.c.username), unique=True)

_sessions = Table(
    "user_sessions",
    _metadata,
    # seq preserves session creation order across the whole table.
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("session_id", String(64), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "session_id", name="uq_user_sessions_user_session"),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new SQLite connection.

    PRAGMAs are per-connection in SQLite, so they are set on connect rather
    than once at startup.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def new_user_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _from_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records and their session sets.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(username="alice", email="alice@example.com", password_hash=h))
        store.add_session(user_id, "3f2a...")
        store.close()
    """

    def __init__(self, db_url: str, timeout: int = 10) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        is_sqlite = db_url.startswith("sqlite")
        if is_sqlite:
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        else:
            engine_kwargs["pool_timeout"] = timeout
            engine_kwargs["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a user and its staged session ids in one transaction.

        Assigns a new id when user.id is None and returns the id.
        Raises DuplicateUserError if the email or username is taken.
        """
        user_id = user.id or new_user_id()
        created_at = user.created_at or _now()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        username=user.username,
                        email=user.email.lower(),
                        password_hash=user.password_hash,
                        phone_number=user.phone_number,
                        reset_otp=user.reset_otp,
                        reset_otp_expires_at=_to_ts(user.reset_otp_expires_at),
                        last_login_at=_to_ts(user.last_login_at),
                        created_at=_to_ts(created_at),
                    )
                )
                for session_id in dict.fromkeys(user.active_refresh_token_ids):
                    self._insert_session(conn, user_id, session_id)
        except IntegrityError as exc:
            raise DuplicateUserError(user.username) from exc
        user.id = user_id
        user.created_at = created_at
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._session_ids(conn, user_id))

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._session_ids(conn, row.id))

    def find_user_by_email_or_username(self, email: str, username: str) -> User | None:
        """Return the first user whose email or (case-insensitive) username matches."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select()
                .where(or_(_users.c.email == email.lower(), func.lower(_users.c.username) == username.lower()))
                .limit(1)
            ).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._session_ids(conn, row.id))

    def record_login(self, user_id: str, session_id: str, when: datetime) -> bool:
        """Add a login's session id and stamp last_login_at in one transaction.

        Either both writes commit or neither does. Returns False, with
        nothing written, if session_id is already in the set.
        """
        try:
            with self.engine.begin() as conn:
                self._insert_session(conn, user_id, session_id)
                self._stamp_last_login(conn, user_id, when)
        except IntegrityError:
            return False
        return True

    # ------------------------------------------------------------------
    # Session set -- atomic primitives
    # ------------------------------------------------------------------

    def list_sessions(self, user_id: str) -> list[str]:
        """Return the user's live session ids in creation order."""
        with self.engine.connect() as conn:
            return self._session_ids(conn, user_id)

    def add_session(self, user_id: str, session_id: str) -> bool:
        """Add session_id to the set. Returns False if it was already present."""
        try:
            with self.engine.begin() as conn:
                self._insert_session(conn, user_id, session_id)
        except IntegrityError:
            return False
        return True

    def remove_session(self, user_id: str, session_id: str) -> bool:
        """Remove one session id. Returns True if a row was removed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.user_id == user_id) & (_sessions.c.session_id == session_id))
            )
        return result.rowcount > 0

    def rotate_session(self, user_id: str, old_session_id: str, new_session_id: str) -> bool:
        """Replace old_session_id with new_session_id in one transaction.

        The new id is inserted only if the old id was actually removed, so a
        replayed or concurrently rotated token never mints a second session.
        Returns whether the old id was present.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.user_id == user_id) & (_sessions.c.session_id == old_session_id))
            )
            if result.rowcount == 0:
                return False
            self._insert_session(conn, user_id, new_session_id)
        return True

    def clear_sessions(self, user_id: str) -> int:
        """Remove every session id for the user. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    # ------------------------------------------------------------------
    # OTP / password
    # ------------------------------------------------------------------

    def set_reset_otp(self, user_id: str, code: str, expires_at: datetime) -> bool:
        """Set reset_otp and reset_otp_expires_at together."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(reset_otp=code, reset_otp_expires_at=_to_ts(expires_at))
            )
        return result.rowcount > 0

    def clear_reset_otp(self, user_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(reset_otp=None, reset_otp_expires_at=None)
            )
        return result.rowcount > 0

    def reset_password(self, user_id: str, password_hash: str, expected_otp: str) -> bool:
        """Replace the password hash and clear the OTP fields in one statement.

        Only applies while reset_otp still equals expected_otp. Returns False
        if another request consumed or replaced the code first.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.reset_otp == expected_otp))
                .values(password_hash=password_hash, reset_otp=None, reset_otp_expires_at=None)
            )
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _session_ids(conn: Connection, user_id: str) -> list[str]:
        rows = conn.execute(
            _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.seq)
        ).fetchall()
        return [r.session_id for r in rows]

    @staticmethod
    def _insert_session(conn: Connection, user_id: str, session_id: str) -> None:
        conn.execute(_sessions.insert().values(user_id=user_id, session_id=session_id, created_at=_to_ts(_now())))

    @staticmethod
    def _stamp_last_login(conn: Connection, user_id: str, when: datetime) -> None:
        conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=_to_ts(when)))


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, session_ids: list[str]) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        phone_number=row.phone_number,
        active_refresh_token_ids=session_ids,
        reset_otp=row.reset_otp,
        reset_otp_expires_at=_from_ts(row.reset_otp_expires_at),
        last_login_at=_from_ts(row.last_login_at),
        created_at=_from_ts(row.created_at),
    )
