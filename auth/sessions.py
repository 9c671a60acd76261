"""
auth/sessions.py -- Per-user registry of live refresh-token sessions.

A session id is the unit of revocation: one id per refresh-token grant, kept
in the user's active set. A refresh token is usable only while its id is in
the set.

Every mutation goes through one atomic UserStore primitive and then mirrors
the committed result onto the in-memory User, so the caller's copy stays
consistent without ever writing the whole set back.
"""

from __future__ import annotations

import logging
from datetime import datetime

from auth.models import User
from auth.store import UserStore

logger = logging.getLogger("sessionauth.sessions")


class SessionRegistry:
    def __init__(self, store: UserStore) -> None:
        self._store = store

    def stage_session(self, user: User, session_id: str) -> None:
        """Add session_id to a record that has not been persisted yet.

        UserStore.create_user writes staged ids in the same transaction as
        the record itself.
        """
        if session_id not in user.active_refresh_token_ids:
            user.active_refresh_token_ids.append(session_id)

    def register_session(self, user: User, session_id: str, login_at: datetime | None = None) -> bool:
        """Atomically add session_id to a stored user's set.

        With login_at, the id and the user's last_login_at commit in the same
        transaction, so a failed login never leaves a session behind.
        Returns False, with nothing written, if the id was already present.
        """
        if login_at is None:
            added = self._store.add_session(user.id, session_id)
        else:
            added = self._store.record_login(user.id, session_id, login_at)
            if added:
                user.last_login_at = login_at
        if added and session_id not in user.active_refresh_token_ids:
            user.active_refresh_token_ids.append(session_id)
        logger.debug("Session registered for user %s (new=%s)", user.id, added)
        return added

    def rotate_session(self, user: User, old_session_id: str, new_session_id: str) -> bool:
        """Swap old_session_id for new_session_id as one unit.

        Accepts a missing old id without raising -- it may have been revoked
        concurrently -- but then adds nothing and returns False. The caller
        must reject the refresh request in that case.
        """
        rotated = self._store.rotate_session(user.id, old_session_id, new_session_id)
        if old_session_id in user.active_refresh_token_ids:
            user.active_refresh_token_ids.remove(old_session_id)
        if rotated:
            user.active_refresh_token_ids.append(new_session_id)
        return rotated

    def is_session_active(self, user: User, session_id: str) -> bool:
        return session_id in user.active_refresh_token_ids

    def revoke_session(self, user: User, session_id: str) -> bool:
        """Remove one session id. Idempotent; returns whether it was present."""
        removed = self._store.remove_session(user.id, session_id)
        if session_id in user.active_refresh_token_ids:
            user.active_refresh_token_ids.remove(session_id)
        return removed

    def revoke_all_sessions(self, user: User) -> int:
        """Clear the user's set. Returns how many sessions were revoked."""
        count = self._store.clear_sessions(user.id)
        user.active_refresh_token_ids.clear()
        return count
