"""
tests/test_store.py -- UserStore persistence and atomic primitives.

Covers:
  - create_user assigns ids, lower-cases email, persists staged sessions
  - duplicate email / case-insensitive duplicate username raise DuplicateUserError
  - lookups by id, email and email-or-username
  - record_login commits the session id and last_login_at together
  - session set: creation order, duplicate adds, removal, clear
  - rotate_session only inserts the new id when the old id was removed
  - reset_password is conditional on the expected code and clears OTP fields
  - timestamps survive the round trip as aware UTC datetimes
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from auth.errors import DuplicateUserError
from auth.models import User
from auth.store import UserStore


def _user(username: str = "alice", email: str = "alice@example.com", **kwargs) -> User:
    return User(username=username, email=email, password_hash="$2b$04$hash", **kwargs)


class TestUsers:
    def test_create_assigns_id_and_normalizes_email(self, store: UserStore) -> None:
        user = _user(email="Alice@Example.COM")
        user_id = store.create_user(user)
        assert user.id == user_id
        loaded = store.get_by_id(user_id)
        assert loaded.email == "alice@example.com"
        assert loaded.created_at is not None
        assert loaded.created_at.tzinfo is not None

    def test_create_persists_staged_sessions_in_order(self, store: UserStore) -> None:
        user_id = store.create_user(_user(active_refresh_token_ids=["s1", "s2", "s1"]))
        assert store.list_sessions(user_id) == ["s1", "s2"]

    def test_duplicate_email_rejected(self, store: UserStore) -> None:
        store.create_user(_user())
        with pytest.raises(DuplicateUserError):
            store.create_user(_user(username="other", email="ALICE@example.com"))

    def test_duplicate_username_rejected_case_insensitively(self, store: UserStore) -> None:
        store.create_user(_user())
        with pytest.raises(DuplicateUserError):
            store.create_user(_user(username="ALICE", email="other@example.com"))

    def test_failed_create_leaves_no_sessions(self, store: UserStore) -> None:
        store.create_user(_user())
        dup = _user(email="alice@example.com", username="bob", id="dup-id", active_refresh_token_ids=["s9"])
        with pytest.raises(DuplicateUserError):
            store.create_user(dup)
        assert store.list_sessions("dup-id") == []

    def test_lookups(self, store: UserStore) -> None:
        user_id = store.create_user(_user())
        assert store.get_by_email("ALICE@example.com").id == user_id
        assert store.find_user_by_email_or_username("x@example.com", "Alice").id == user_id
        assert store.find_user_by_email_or_username("alice@example.com", "nobody").id == user_id
        assert store.find_user_by_email_or_username("x@example.com", "nobody") is None
        assert store.get_by_id("missing") is None
        assert store.get_by_email("missing@example.com") is None

    def test_record_login(self, store: UserStore) -> None:
        user_id = store.create_user(_user())
        when = datetime(2026, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)
        assert store.record_login(user_id, "s1", when) is True
        loaded = store.get_by_id(user_id)
        assert loaded.last_login_at == when
        assert loaded.active_refresh_token_ids == ["s1"]

    def test_record_login_duplicate_session_writes_nothing(self, store: UserStore) -> None:
        user_id = store.create_user(_user(active_refresh_token_ids=["s1"]))
        when = datetime(2026, 1, 2, tzinfo=timezone.utc)
        assert store.record_login(user_id, "s1", when) is False
        assert store.get_by_id(user_id).last_login_at is None

    def test_record_login_is_all_or_nothing(self, store: UserStore) -> None:
        user_id = store.create_user(_user())
        with patch.object(store, "_stamp_last_login", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                store.record_login(user_id, "s1", datetime.now(timezone.utc))
        assert store.list_sessions(user_id) == []


class TestSessionSet:
    def test_add_preserves_creation_order(self, store: UserStore) -> None:
        user_id = store.create_user(_user())
        for sid in ("c", "a", "b"):
            assert store.add_session(user_id, sid) is True
        assert store.list_sessions(user_id) == ["c", "a", "b"]

    def test_duplicate_add_is_ignored(self, store: UserStore) -> None:
        user_id = store.create_user(_user())
        store.add_session(user_id, "a")
        assert store.add_session(user_id, "a") is False
        assert store.list_sessions(user_id) == ["a"]

    def test_sets_are_per_user(self, store: UserStore) -> None:
        alice = store.create_user(_user())
        bob = store.create_user(_user("bob", "bob@example.com"))
        store.add_session(alice, "shared")
        store.add_session(bob, "shared")
        store.remove_session(alice, "shared")
        assert store.list_sessions(bob) == ["shared"]

    def test_remove(self, store: UserStore) -> None:
        user_id = store.create_user(_user(active_refresh_token_ids=["a", "b"]))
        assert store.remove_session(user_id, "a") is True
        assert store.remove_session(user_id, "a") is False
        assert store.list_sessions(user_id) == ["b"]

    def test_rotate_replaces_and_appends(self, store: UserStore) -> None:
        user_id = store.create_user(_user(active_refresh_token_ids=["a", "b"]))
        assert store.rotate_session(user_id, "a", "c") is True
        assert store.list_sessions(user_id) == ["b", "c"]

    def test_second_rotation_of_same_id_adds_nothing(self, store: UserStore) -> None:
        user_id = store.create_user(_user(active_refresh_token_ids=["a"]))
        assert store.rotate_session(user_id, "a", "b") is True
        assert store.rotate_session(user_id, "a", "c") is False
        assert store.list_sessions(user_id) == ["b"]

    def test_clear(self, store: UserStore) -> None:
        user_id = store.create_user(_user(active_refresh_token_ids=["a", "b", "c"]))
        assert store.clear_sessions(user_id) == 3
        assert store.list_sessions(user_id) == []
        assert store.clear_sessions(user_id) == 0


class TestOtpFields:
    def test_set_and_clear_together(self, store: UserStore) -> None:
        user_id = store.create_user(_user())
        expires = datetime.now(timezone.utc) + timedelta(minutes=10)
        store.set_reset_otp(user_id, "123456", expires)
        loaded = store.get_by_id(user_id)
        assert loaded.reset_otp == "123456"
        assert loaded.reset_otp_expires_at == expires

        store.clear_reset_otp(user_id)
        loaded = store.get_by_id(user_id)
        assert loaded.reset_otp is None and loaded.reset_otp_expires_at is None

    def test_reset_password_requires_expected_code(self, store: UserStore) -> None:
        user_id = store.create_user(_user())
        store.set_reset_otp(user_id, "123456", datetime.now(timezone.utc) + timedelta(minutes=10))

        assert store.reset_password(user_id, "new-hash", "654321") is False
        assert store.get_by_id(user_id).password_hash == "$2b$04$hash"

        assert store.reset_password(user_id, "new-hash", "123456") is True
        loaded = store.get_by_id(user_id)
        assert loaded.password_hash == "new-hash"
        assert loaded.reset_otp is None and loaded.reset_otp_expires_at is None

        # The code is spent.
        assert store.reset_password(user_id, "other-hash", "123456") is False
