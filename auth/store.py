"""
auth/store.py -- SQLAlchemy Core persistence layer for users and refresh tokens.

Pattern: Repository + Data Mapper. UserStore and RefreshTokenStore are the
repositories; _row_to_user / _row_to_refresh_token are the mappers. The
session service never touches SQL directly.

Both stores share one Database (engine + schema) so refresh_tokens.user_id
can reference users.id with ON DELETE CASCADE.

Security:
  All queries use bound parameters. The one formatted statement is the
  busy_timeout PRAGMA, whose value is an int computed here.

Atomicity:
  RefreshTokenStore.delete() is a single DELETE statement and reports the
  affected-row count. That statement is the "claim" step of refresh-token
  rotation: of N concurrent deletes of the same token_id, the storage engine
  lets exactly one see rowcount == 1.

Deadlines:
  Every public method takes a CallContext. It is checked before each
  statement. On SQLite a progress handler is installed for the duration of
  the call so a statement already running is interrupted once the context
  is done; the interruption surfaces as DeadlineExceeded. The progress
  handler does not fire while SQLite waits on a lock, so busy_timeout is
  also set per call to the context's remaining time.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    event,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from auth.models import RefreshToken, User
from core.context import CallContext
from core.errors import DeadlineExceeded, NotFoundError, StorageError, ValidationError

logger = logging.getLogger("noteapp.store")

# SQLite calls the progress handler every N virtual-machine instructions.
_PROGRESS_STEPS = 1000

# The progress handler does not run while SQLite sleeps on a lock, so the
# lock wait itself is capped at the context's remaining time.
_BUSY_TIMEOUT_MS = 30_000

# Columns UserStore.update_user() accepts. Anything else is a caller bug.
_UPDATABLE_USER_FIELDS = frozenset({"username", "email", "password_hash", "image_url"})

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("image_url", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("token_id", String(64), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", Text, nullable=False),  # ISO 8601, UTC
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement per connection.

    SQLite PRAGMAs are not inherited by new connections from the pool, and
    foreign keys (needed for ON DELETE CASCADE) are off by default.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _busy_timeout_ms(ctx: CallContext) -> int:
    remaining = ctx.remaining()
    if remaining is None:
        return _BUSY_TIMEOUT_MS
    # Round up so the wait never ends before the deadline has passed.
    return min(_BUSY_TIMEOUT_MS, math.ceil(remaining * 1000) + 1)


def _from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Engine plus schema shared by UserStore and RefreshTokenStore.

    Usage:
        db = Database("sqlite:///noteapp.db")
        users = UserStore(db)
        tokens = RefreshTokenStore(db)
        db.close()
    """

    def __init__(self, db_url: str) -> None:
        self.is_sqlite = db_url.startswith("sqlite")
        connect_args: dict = {}
        if self.is_sqlite:
            connect_args["check_same_thread"] = False
            # Lock wait for calls without a deadline; connect() narrows it per call.
            connect_args["timeout"] = _BUSY_TIMEOUT_MS / 1000
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if self.is_sqlite:
            event.listen(self.engine, "connect", _configure_sqlite)
        metadata.create_all(self.engine)

    @contextmanager
    def connect(self, ctx: CallContext, op: str) -> Iterator[Connection]:
        """Yield a connection bound to ctx, translating driver errors.

        op names the operation for log lines and error messages. SQLAlchemy
        errors become StorageError; an interrupt caused by ctx becomes
        DeadlineExceeded. Any other exception propagates unchanged.
        """
        ctx.raise_if_done()
        try:
            with self.engine.connect() as conn:
                raw = conn.connection.driver_connection if self.is_sqlite else None
                if raw is not None:
                    raw.execute(f"PRAGMA busy_timeout = {_busy_timeout_ms(ctx)}")
                    raw.set_progress_handler(lambda: 1 if ctx.done() else 0, _PROGRESS_STEPS)
                try:
                    yield conn
                finally:
                    if raw is not None:
                        raw.set_progress_handler(None, 0)
                        raw.execute(f"PRAGMA busy_timeout = {_BUSY_TIMEOUT_MS}")
        except OperationalError as exc:
            if ctx.done():
                logger.warning("%s aborted: context done", op)
                raise DeadlineExceeded(f"{op}: deadline exceeded") from exc
            logger.error("%s failed: %s", op, exc)
            raise StorageError(f"{op} failed") from exc
        except SQLAlchemyError as exc:
            logger.error("%s failed: %s", op, exc)
            raise StorageError(f"{op} failed") from exc

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records (the credential store the session core reads)."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create_user(self, ctx: CallContext, user: User) -> None:
        """Insert a new user.

        A duplicate username or email raises StorageError("failed to create
        user"), the same as any other insert failure.
        """
        now = _now_iso()
        try:
            with self._db.connect(ctx, "create user") as conn:
                conn.execute(
                    insert(_users).values(
                        id=user.id,
                        username=user.username,
                        email=user.email,
                        password_hash=user.password_hash,
                        image_url=user.image_url,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except StorageError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                logger.info("create user rejected by constraint (user_id=%s)", user.id)
            raise

    def get_by_id(self, ctx: CallContext, user_id: str) -> User:
        """Return the user with user_id. Raises NotFoundError if absent."""
        with self._db.connect(ctx, "get user") as conn:
            row = conn.execute(select(_users).where(_users.c.id == user_id)).fetchone()
        if row is None:
            raise NotFoundError("user not found")
        return _row_to_user(row)

    def get_credentials(self, ctx: CallContext, email: str) -> tuple[str, str]:
        """Return (user_id, password_hash) for email. Raises NotFoundError if absent."""
        with self._db.connect(ctx, "get credentials") as conn:
            row = conn.execute(
                select(_users.c.id, _users.c.password_hash).where(_users.c.email == email)
            ).fetchone()
        if row is None:
            raise NotFoundError("user not found")
        return row.id, row.password_hash

    def update_user(self, ctx: CallContext, user_id: str, **fields) -> None:
        """Update mutable profile fields on an existing user.

        Accepted fields: username, email, password_hash, image_url. Raises
        ValidationError when no fields are given, NotFoundError when no row
        matched.
        """
        unknown = set(fields) - _UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            raise ValidationError("no fields to update")
        with self._db.connect(ctx, "update user") as conn:
            result = conn.execute(update(_users).where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields))
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError("user not found")

    def delete_user(self, ctx: CallContext, user_id: str) -> None:
        """Delete a user and, by cascade, every refresh token they hold."""
        with self._db.connect(ctx, "delete user") as conn:
            result = conn.execute(delete(_users).where(_users.c.id == user_id))
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError("user not found")


class RefreshTokenStore:
    """Repository for RefreshToken records. Rows are created and deleted, never updated."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, ctx: CallContext, token: RefreshToken) -> None:
        with self._db.connect(ctx, "create refresh token") as conn:
            conn.execute(
                insert(_refresh_tokens).values(
                    token_id=token.token_id,
                    user_id=token.user_id,
                    expires_at=_to_iso(token.expires_at),
                )
            )
            conn.commit()

    def get(self, ctx: CallContext, token_id: str) -> RefreshToken:
        """Return the record for token_id. Raises NotFoundError if absent."""
        with self._db.connect(ctx, "get refresh token") as conn:
            row = conn.execute(select(_refresh_tokens).where(_refresh_tokens.c.token_id == token_id)).fetchone()
        if row is None:
            raise NotFoundError("refresh token not found")
        return _row_to_refresh_token(row)

    def delete(self, ctx: CallContext, token_id: str) -> None:
        """Delete token_id in one statement. Raises NotFoundError if no row was affected."""
        with self._db.connect(ctx, "delete refresh token") as conn:
            result = conn.execute(delete(_refresh_tokens).where(_refresh_tokens.c.token_id == token_id))
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError("refresh token not found")

    def delete_expired(self, ctx: CallContext, before: datetime) -> int:
        """Delete every record whose expiry is at or before `before`. Returns rows removed.

        ISO 8601 strings in one offset (+00:00) sort chronologically, so a
        string comparison is a time comparison.
        """
        with self._db.connect(ctx, "purge refresh tokens") as conn:
            result = conn.execute(delete(_refresh_tokens).where(_refresh_tokens.c.expires_at <= _to_iso(before)))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        image_url=row.image_url,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        user_id=row.user_id,
        token_id=row.token_id,
        expires_at=_from_iso(row.expires_at),
    )
