"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive in the Authorization: Bearer <token> header. The
refresh token travels separately in the httpOnly "refresh_token" cookie and
is only read by the refresh and logout routes.

get_current_user_id() verifies the Bearer token through SessionService and
raises HTTP 401 with one fixed message on any failure, whatever the reason.

Layer rule: auth/dependencies.py may import from fastapi (for Request and
HTTPException) because this module is part of the FastAPI dependency
injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.service import SessionService
from core.errors import AuthenticationError

REFRESH_COOKIE = "refresh_token"

_UNAUTHORIZED = {"code": "unauthorized", "message": "Authentication required."}


def bearer_token(request: Request) -> str | None:
    """Return the token from an Authorization: Bearer header, or None."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme != "Bearer" or not token:
        return None
    return token


def get_session_service(request: Request) -> SessionService:
    return request.app.state.session_service


def get_current_user_id(request: Request) -> str:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user_id: str = Depends(get_current_user_id)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED)
    try:
        return get_session_service(request).verify_access_token(token)
    except AuthenticationError:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED) from None


def get_refresh_cookie(request: Request) -> str:
    """Require the refresh_token cookie. Raises HTTP 401 when it is missing."""
    token = request.cookies.get(REFRESH_COOKIE, "")
    if not token:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED)
    return token
