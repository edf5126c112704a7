"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

Timing equalization: the dummy hash is computed once per hasher so
AuthService.authenticate() can always run bcrypt, whether or not the email
exists. Response time then does not reveal which accounts are registered.
"""

from __future__ import annotations

import bcrypt


class PasswordHasher:
    """Salted one-way hashing with a configurable bcrypt work factor."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("keystone_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        Passwords longer than 72 bytes are truncated by bcrypt. The API layer
        caps password length at 72 characters to keep inputs under that limit.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext matches the hash. Never raises."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            # Malformed stored hash (bad salt, wrong prefix).
            return False

    def verify_dummy(self, plain: str) -> None:
        """Burn one bcrypt comparison. Used when there is no real hash to check."""
        self.verify(plain, self._dummy_hash)
