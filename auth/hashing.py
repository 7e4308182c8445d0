"""
auth/hashing.py -- Password hashing and verification (bcrypt).

Security design decisions:
  bcrypt directly rather than passlib[bcrypt]: passlib's internal wrap-bug
      detection creates a password longer than 72 bytes, which bcrypt 4.x
      rejects. Direct usage has no compatibility shim.

  Fresh salt per call: bcrypt.gensalt() is called for every hash, so two
      hashes of the same password never compare equal. Hash equality is
      therefore meaningless and never used; verification always goes through
      bcrypt.checkpw, which compares in constant time.

  72-byte limit: bcrypt only reads the first 72 bytes of input (and bcrypt
      5.x raises on longer input). Longer passwords are rejected up front as
      a validation failure instead of being silently truncated.

  Timing equalization: verify_dummy() burns one bcrypt comparison against a
      hash computed at construction time. SessionService calls it when an
      email is unknown so response time does not reveal account existence.
"""

from __future__ import annotations

import bcrypt

from core.errors import AuthenticationError, ValidationError

MAX_PASSWORD_BYTES = 72


class CredentialVerifier:
    """Hash and check passwords at a fixed bcrypt cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        self._rounds = rounds
        self._dummy_hash: bytes = bcrypt.hashpw(b"noteapp_timing_dummy", bcrypt.gensalt(rounds=rounds))

    def hash_password(self, password: str) -> str:
        """Return a salted bcrypt hash of password.

        Raises ValidationError for an empty password or one over 72 bytes.
        """
        if not password:
            raise ValidationError("empty password")
        raw = password.encode("utf-8")
        if len(raw) > MAX_PASSWORD_BYTES:
            raise ValidationError("password too long")
        return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    def verify_password(self, password_hash: str, password: str) -> None:
        """Raise AuthenticationError unless password matches password_hash.

        A malformed or empty hash is an authentication failure, not a crash:
        bcrypt raises ValueError ("Invalid salt") for those.
        """
        if not password or not password_hash:
            raise AuthenticationError()
        raw = password.encode("utf-8")
        if len(raw) > MAX_PASSWORD_BYTES:
            raise AuthenticationError()
        try:
            ok = bcrypt.checkpw(raw, password_hash.encode("utf-8"))
        except ValueError:
            raise AuthenticationError() from None
        if not ok:
            raise AuthenticationError()

    def verify_dummy(self, password: str) -> None:
        """Spend one bcrypt comparison without a real hash. Always returns None."""
        raw = (password or "x").encode("utf-8")[:MAX_PASSWORD_BYTES]
        bcrypt.checkpw(raw, self._dummy_hash)
