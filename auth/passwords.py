"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

Passwords longer than 72 bytes are truncated before hashing and verifying.
bcrypt only ever looked at the first 72 bytes; recent bcrypt releases raise
instead of truncating silently, so the truncation is done here explicitly.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

import bcrypt

logger = logging.getLogger("authkit.auth")

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """One-way salted hash + verify for stored passwords.

    rounds is the bcrypt cost factor. Production keeps the default 12; tests
    pass 4 so suites stay fast.

    A dummy hash is computed once at construction. burn() verifies against it
    so a login for an unknown email spends the same bcrypt work as a login
    with a wrong password [C1].
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("authkit_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password."""
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        A hash bcrypt cannot parse verifies False rather than raising.
        """
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash could not be parsed")
            return False

    def burn(self, plain: str) -> None:
        """Spend one verify's worth of work and discard the result."""
        self.verify(plain, self._dummy_hash)
