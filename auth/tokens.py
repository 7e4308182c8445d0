"""
auth/tokens.py -- Access-token (JWT) issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (user ID), iat, and exp.
       They are stateless and cannot be revoked before exp, so the TTL
       comes from AuthConfig and is set per deployment.

  Algorithm pinning: the header "alg" is checked against HS256 before any
       signature work, and decode() is also restricted to algorithms=[HS256].
       A token claiming "none", RS256, or anything else is rejected outright.

  Injected clock: python-jose's own exp check reads the wall clock, so it is
       disabled (verify_exp=False) and exp is compared against the codec's
       clock instead. That keeps expiry testable without sleeping.
       exp is rounded up to the next whole second so a token is never valid
       for less than the configured TTL.

  Canonical signature: base64url decoding ignores the padding bits of the
       last signature character, so several spellings decode to the same
       MAC. The signature segment is recomputed and compared as text with
       hmac.compare_digest; any altered character fails.

  Opaque failure: every rejection raises the same AuthenticationError. The
       reason is logged at DEBUG for operators and never returned to callers.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import math
import uuid
from datetime import datetime
from typing import NoReturn

from jose import JWTError, jwt
from jose.utils import base64url_encode

from core.config import AuthConfig
from core.context import Clock, utc_now
from core.errors import AuthenticationError

logger = logging.getLogger("noteapp.auth")

ALGORITHM = "HS256"


class TokenCodec:
    """Sign and verify compact access tokens with a symmetric key.

    Usage:
        codec = TokenCodec(config)
        token = codec.issue(user_id)
        user_id = codec.verify(token)
    """

    def __init__(self, config: AuthConfig, clock: Clock = utc_now) -> None:
        self._secret = config.secret_key
        self._ttl = config.access_token_ttl
        self._clock = clock

    def issue(self, subject: str, now: datetime | None = None) -> str:
        """Encode a signed JWT for subject valid from now until now + TTL."""
        issued = now or self._clock()
        payload = {
            "sub": subject,
            "iat": int(issued.timestamp()),
            "exp": math.ceil((issued + self._ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> str:
        """Return the subject of a valid token, raise AuthenticationError otherwise."""
        if not token:
            self._reject("empty token")
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            self._reject(f"malformed header: {exc}")
        if header.get("alg") != ALGORITHM:
            self._reject(f"unexpected algorithm {header.get('alg')!r}")
        if not self._signature_matches(token):
            self._reject("signature mismatch")

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as exc:
            self._reject(f"signature or claims check failed: {exc}")

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            self._reject("missing or non-numeric exp claim")
        if self._clock().timestamp() >= exp:
            self._reject("token expired")

        subject = claims.get("sub")
        if not isinstance(subject, str) or not _is_uuid(subject):
            self._reject("missing or malformed sub claim")
        return subject

    def _signature_matches(self, token: str) -> bool:
        signing_input, _, signature = token.rpartition(".")
        if signing_input.count(".") != 1:
            return False
        mac = hmac.new(self._secret.encode("utf-8"), signing_input.encode("utf-8"), hashlib.sha256).digest()
        return hmac.compare_digest(base64url_encode(mac), signature.encode("utf-8"))

    @staticmethod
    def _reject(reason: str) -> NoReturn:
        logger.debug("access token rejected: %s", reason)
        raise AuthenticationError()


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True
