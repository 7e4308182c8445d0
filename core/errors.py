"""
core/errors.py -- Error taxonomy shared by the session core and the API layer.

Every failure raised out of auth/ is a SessionError carrying an ErrorKind.
The API layer maps kinds to HTTP status codes in one place (api/main.py)
instead of matching on message text.

Kinds:
  validation      -- empty/malformed input rejected before touching storage
  authentication  -- bad password, bad access token, unknown/expired/consumed
                     refresh token. One opaque kind at the boundary: the
                     message never says which check failed.
  not_found       -- user or record absent (non-authentication lookups)
  storage         -- I/O failure, including duplicate keys at sign-up
                     (no separate conflict kind; see DESIGN.md)

Retry guidance: only not_found/storage failures from read-only lookups are
safe to retry. refresh() and logout() consume a token and must never be
retried blindly.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    STORAGE = "storage"


class SessionError(Exception):
    """Base class for every error the session core raises."""

    kind: ErrorKind = ErrorKind.STORAGE

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class ValidationError(SessionError):
    kind = ErrorKind.VALIDATION


class AuthenticationError(SessionError):
    """Opaque authentication failure.

    The constructor ignores any detail on purpose: the internal reason is
    logged by the raiser, never carried on the exception.
    """

    kind = ErrorKind.AUTHENTICATION

    def __init__(self) -> None:
        super().__init__("invalid credentials")


class NotFoundError(SessionError):
    kind = ErrorKind.NOT_FOUND


class StorageError(SessionError):
    """Backing store failure.

    outcome_unknown is True when the failed call may still have committed
    (e.g. a deadline hit while a DELETE was in flight). A caller holding a
    refresh token must then assume the token was consumed.
    """

    kind = ErrorKind.STORAGE

    def __init__(self, message: str = "", *, outcome_unknown: bool = False) -> None:
        super().__init__(message)
        self.outcome_unknown = outcome_unknown


class DeadlineExceeded(StorageError):
    """The CallContext expired or was cancelled before the store call finished."""
