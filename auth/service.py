"""
auth/service.py -- Session orchestration: sign-up, sign-in, logout, refresh.

SessionService is the only entry point the API layer uses for sessions. It
composes four collaborators injected individually:

  credential store  -- CredentialStore protocol (auth.store.UserStore)
  token store       -- TokenStore protocol (auth.store.RefreshTokenStore)
  verifier          -- auth.hashing.CredentialVerifier
  codec             -- auth.tokens.TokenCodec

plus an immutable AuthConfig and a clock. The service holds no mutable
state, so one instance is shared by every request thread.

Refresh-token rotation:
  1. get(token_id)            -- unknown -> AuthenticationError
  2. delete(token_id)         -- no row affected -> AuthenticationError
  3. expires_at <= now        -- AuthenticationError (token already burned)
  4. issue access token + new refresh record, persist, return the pair

The DELETE in step 2 is the claim. Of N concurrent refreshes of one token
exactly one gets past it, however far the others have progressed. The
expiry check runs after the delete, so an expired token is consumed on
presentation and cannot be retried.

A storage failure or deadline during step 2 leaves the outcome unknown;
it is re-raised with outcome_unknown=True and the caller must treat the
token as consumed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Protocol

from auth.hashing import CredentialVerifier
from auth.models import RefreshToken, TokenPair, User
from auth.tokens import TokenCodec
from core.config import AuthConfig
from core.context import CallContext, Clock, utc_now
from core.errors import AuthenticationError, NotFoundError, StorageError, ValidationError

logger = logging.getLogger("noteapp.auth")


class CredentialStore(Protocol):
    def create_user(self, ctx: CallContext, user: User) -> None: ...

    def get_credentials(self, ctx: CallContext, email: str) -> tuple[str, str]: ...


class TokenStore(Protocol):
    def create(self, ctx: CallContext, token: RefreshToken) -> None: ...

    def get(self, ctx: CallContext, token_id: str) -> RefreshToken: ...

    def delete(self, ctx: CallContext, token_id: str) -> None: ...

    def delete_expired(self, ctx: CallContext, before: datetime) -> int: ...


def _short(token_id: str) -> str:
    """First 8 chars of a token ID -- enough to correlate log lines, useless to replay."""
    return token_id[:8]


class SessionService:
    """Sign-up, sign-in, logout, refresh, and access-token verification.

    Every method that touches storage accepts an optional CallContext. When
    omitted, a context bounded by config.store_timeout is used so no call
    can block on a hung store indefinitely.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        tokens: TokenStore,
        verifier: CredentialVerifier,
        codec: TokenCodec,
        config: AuthConfig,
        clock: Clock = utc_now,
    ) -> None:
        self._credentials = credentials
        self._tokens = tokens
        self._verifier = verifier
        self._codec = codec
        self._config = config
        self._clock = clock

    def _ctx(self, ctx: CallContext | None) -> CallContext:
        return ctx if ctx is not None else CallContext.with_timeout(self._config.store_timeout)

    # ------------------------------------------------------------------
    # Sign-up / sign-in / logout
    # ------------------------------------------------------------------

    def sign_up(
        self,
        username: str,
        email: str,
        password: str,
        image_url: str | None = None,
        ctx: CallContext | None = None,
    ) -> str:
        """Create an account and return its new user ID.

        Raises ValidationError for an empty field or unusable password, and
        StorageError if the insert fails (including a duplicate username or
        email, which is not reported separately).
        """
        password_hash = self._verifier.hash_password(password)
        user = User(
            id=str(uuid.uuid4()),
            username=username,
            email=email,
            password_hash=password_hash,
            image_url=image_url,
        )
        try:
            user.validate()
        except ValidationError as exc:
            logger.debug("sign-up validation failed: %s", exc.message)
            raise

        try:
            self._credentials.create_user(self._ctx(ctx), user)
        except StorageError as exc:
            logger.error("failed to create user (user_id=%s)", user.id)
            raise StorageError("failed to create user") from exc

        logger.info("user signed up (user_id=%s)", user.id)
        return user.id

    def sign_in(self, email: str, password: str, ctx: CallContext | None = None) -> TokenPair:
        """Check email/password and issue a fresh access + refresh token pair."""
        if not email or not password:
            raise ValidationError("email and password are required")
        ctx = self._ctx(ctx)

        try:
            user_id, password_hash = self._credentials.get_credentials(ctx, email)
        except NotFoundError:
            # Burn one bcrypt round so unknown emails cost the same as wrong passwords.
            self._verifier.verify_dummy(password)
            logger.warning("sign-in with unknown email")
            raise AuthenticationError() from None

        try:
            self._verifier.verify_password(password_hash, password)
        except AuthenticationError:
            logger.warning("sign-in with incorrect password (user_id=%s)", user_id)
            raise

        pair = self._issue_pair(ctx, user_id, self._clock())
        logger.info("user signed in (user_id=%s)", user_id)
        return pair

    def logout(self, refresh_token_id: str, ctx: CallContext | None = None) -> None:
        """Consume a refresh token. Raises NotFoundError if it does not exist.

        Not idempotent: a second logout with the same token fails.
        """
        if not refresh_token_id:
            raise ValidationError("refresh token is required")
        try:
            self._tokens.delete(self._ctx(ctx), refresh_token_id)
        except NotFoundError:
            logger.warning("logout with unknown refresh token (token=%s)", _short(refresh_token_id))
            raise
        logger.info("user logged out (token=%s)", _short(refresh_token_id))

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def refresh(self, refresh_token_id: str, ctx: CallContext | None = None) -> TokenPair:
        """Rotate a refresh token: consume it and issue a replacement pair.

        Never retry on failure. Every failure after the delete leaves the
        presented token consumed.
        """
        if not refresh_token_id:
            logger.debug("refresh with empty token")
            raise AuthenticationError()
        ctx = self._ctx(ctx)
        short = _short(refresh_token_id)

        try:
            record = self._tokens.get(ctx, refresh_token_id)
        except NotFoundError:
            logger.warning("refresh token not found, possible reuse or logout (token=%s)", short)
            raise AuthenticationError() from None

        try:
            self._tokens.delete(ctx, refresh_token_id)
        except NotFoundError:
            logger.warning("refresh token consumed concurrently (token=%s)", short)
            raise AuthenticationError() from None
        except StorageError as exc:
            logger.error("refresh token delete did not complete, assuming consumed (token=%s)", short)
            raise type(exc)(exc.message, outcome_unknown=True) from exc

        now = self._clock()
        if record.expired(now):
            logger.warning(
                "attempt to refresh expired token (token=%s, expires_at=%s)",
                short,
                record.expires_at.isoformat(),
            )
            raise AuthenticationError()

        try:
            pair = self._issue_pair(ctx, record.user_id, now)
        except StorageError:
            logger.error("failed to issue replacement tokens (user_id=%s, old_token=%s)", record.user_id, short)
            raise

        logger.info(
            "token refreshed (user_id=%s, old_token=%s, new_token=%s)",
            record.user_id,
            short,
            _short(pair.refresh_token),
        )
        return pair

    def _issue_pair(self, ctx: CallContext, user_id: str, now: datetime) -> TokenPair:
        access_token = self._codec.issue(user_id, now=now)
        record = RefreshToken(
            user_id=user_id,
            token_id=str(uuid.uuid4()),
            expires_at=now + self._config.refresh_token_ttl,
        )
        self._tokens.create(ctx, record)
        return TokenPair(access_token=access_token, refresh_token=record.token_id)

    # ------------------------------------------------------------------
    # Access tokens / housekeeping
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str) -> str:
        """Return the user ID in a valid access token. Stateless: no store call."""
        return self._codec.verify(token)

    def purge_expired(self, ctx: CallContext | None = None) -> int:
        """Delete refresh tokens that have already expired. Returns rows removed."""
        removed = self._tokens.delete_expired(self._ctx(ctx), self._clock())
        if removed:
            logger.info("purged %d expired refresh tokens", removed)
        return removed
