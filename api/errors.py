"""
api/errors.py -- Mapping from core ErrorKind to HTTP responses.

One table decides the status code for every SessionError so routes never
match on exception types or message text. Authentication failures always
produce the same body: clients cannot tell a wrong password from an
expired token from a replayed refresh token.
"""

from __future__ import annotations

import logging

from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from core.errors import DeadlineExceeded, ErrorKind, SessionError, StorageError

logger = logging.getLogger("noteapp.api")

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.STORAGE: 500,
}


def _detail_for(exc: SessionError) -> ErrorDetail:
    if exc.kind is ErrorKind.VALIDATION:
        return ErrorDetail(code="validation_error", message=exc.message)
    if exc.kind is ErrorKind.AUTHENTICATION:
        return ErrorDetail(code="unauthorized", message="Invalid credentials.")
    if exc.kind is ErrorKind.NOT_FOUND:
        return ErrorDetail(code="not_found", message="Not found.")
    if isinstance(exc, StorageError) and exc.outcome_unknown:
        return ErrorDetail(
            code="session_state_unknown",
            message="The session could not be refreshed. Sign in again.",
        )
    if isinstance(exc, DeadlineExceeded):
        return ErrorDetail(code="timeout", message="The request timed out.")
    return ErrorDetail(code="internal_error", message="An unexpected error occurred.")


def session_error_response(exc: SessionError) -> JSONResponse:
    """Build the JSON error envelope for a SessionError."""
    status = STATUS_BY_KIND[exc.kind]
    if isinstance(exc, DeadlineExceeded):
        status = 503
    if status >= 500:
        logger.error("session operation failed: %s", exc.message)
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=_detail_for(exc)).model_dump(),
    )
