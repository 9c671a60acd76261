"""
auth/passwords.py -- Password hashing and verification.

bcrypt is used directly (no passlib wrapper). Its cost factor makes
brute-forcing low-entropy secrets like passwords expensive, and checkpw()
compares in constant time.

Timing equalization [C1]: verify_dummy() runs a full bcrypt comparison
against a synthetic hash. The service calls it when a login names an email
that does not exist, so "no such user" costs the same as "wrong password"
and response time does not reveal which accounts exist.
"""

from __future__ import annotations

import logging

import bcrypt

logger = logging.getLogger("sessionauth.passwords")


class PasswordHasher:
    """bcrypt hashing with a fixed cost factor.

    Usage:
        hasher = PasswordHasher(rounds=10)
        stored = hasher.hash("pass123")
        hasher.verify("pass123", stored)  # True
    """

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        # Computed once so the first failed lookup is not measurably slower
        # than later ones.
        self._dummy_hash = self.hash("sessionauth_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt hash of plain."""
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed. Malformed hashes never match."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            logger.warning("Password comparison failed on a malformed hash or oversized input")
            return False

    def verify_dummy(self, plain: str) -> bool:
        """Burn one bcrypt comparison and return False [C1]."""
        self.verify(plain, self._dummy_hash)
        return False
