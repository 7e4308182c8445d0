"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, minimal logic). Stores and the
session service do the work; these only own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from core.errors import ValidationError


@dataclass
class User:
    """A noteapp account.

    The session core only reads id, email, and password_hash. The remaining
    fields belong to profile management and are carried through untouched.
    """

    id: str
    username: str
    email: str
    password_hash: str
    image_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def validate(self) -> None:
        """Reject a user with any empty identifying field before it reaches storage."""
        if not self.id:
            raise ValidationError("invalid user ID")
        if not self.username:
            raise ValidationError("empty username")
        if not self.email:
            raise ValidationError("empty email")
        if not self.password_hash:
            raise ValidationError("empty password")


@dataclass(frozen=True)
class RefreshToken:
    """A persisted, single-use refresh token.

    token_id is the opaque value handed to the client. Rows are created and
    deleted, never updated: consuming a token deletes it.
    """

    user_id: str
    token_id: str
    expires_at: datetime

    def expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
