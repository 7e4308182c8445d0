"""
api/routes/v1/auth.py -- Session REST endpoints.

Routes:
  POST /api/v1/auth/sign-up   -- create an account; returns the new user ID
  POST /api/v1/auth/sign-in   -- password login; access token in body, refresh token cookie
  POST /api/v1/auth/refresh   -- rotate the refresh token cookie; new access token in body
  POST /api/v1/auth/logout    -- consume the refresh token cookie and clear it
  GET  /api/v1/auth/me        -- current user profile (requires Bearer access token)

Security:
  The refresh token is only ever carried in an httpOnly cookie scoped to
  /api/v1/auth, so page scripts cannot read it and other routes never see it.
  Cache-Control: no-store on every response that carries a token.
  Refresh and logout consume the cookie's token. Any failure on those routes
  also clears the cookie: the token it held is gone either way.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.errors import session_error_response
from api.models import AccessTokenResponse, MeResponse, MessageResponse, SignInRequest, SignUpRequest, SignUpResponse
from auth.dependencies import REFRESH_COOKIE, get_current_user_id, get_refresh_cookie, get_session_service
from auth.models import TokenPair
from auth.service import SessionService
from core.context import CallContext
from core.errors import SessionError

# Auth policy:
# - POST /api/v1/auth/sign-up:  public
# - POST /api/v1/auth/sign-in:  public
# - POST /api/v1/auth/refresh:  requires refresh_token cookie
# - POST /api/v1/auth/logout:   requires refresh_token cookie
# - GET  /api/v1/auth/me:       requires Bearer access token (get_current_user_id)
router = APIRouter()

_COOKIE_PATH = "/api/v1/auth"


def _token_response(request: Request, pair: TokenPair) -> JSONResponse:
    """Return the access token in the body and set the refresh token cookie."""
    settings = request.app.state.settings
    resp = JSONResponse(
        status_code=200,
        content=AccessTokenResponse(
            access_token=pair.access_token,
            expires_in=settings.access_token_ttl_seconds,
        ).model_dump(),
    )
    resp.set_cookie(
        REFRESH_COOKIE,
        value=pair.refresh_token,
        max_age=settings.refresh_token_ttl_seconds,
        path=_COOKIE_PATH,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _clear_cookie(resp: JSONResponse) -> JSONResponse:
    resp.delete_cookie(REFRESH_COOKIE, path=_COOKIE_PATH)
    return resp


def _request_ctx(request: Request) -> CallContext:
    return CallContext.with_timeout(request.app.state.auth_config.store_timeout)


@router.post("/auth/sign-up", response_model=SignUpResponse)
def sign_up(
    request: Request,
    body: SignUpRequest,
    service: SessionService = Depends(get_session_service),
) -> SignUpResponse:
    user_id = service.sign_up(body.username, body.email, body.password, body.image_url, ctx=_request_ctx(request))
    return SignUpResponse(id=user_id)


@router.post("/auth/sign-in", response_model=AccessTokenResponse)
def sign_in(
    request: Request,
    body: SignInRequest,
    service: SessionService = Depends(get_session_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 body and take the
    same time (SessionService runs bcrypt in both cases).
    """
    pair = service.sign_in(body.email, body.password, ctx=_request_ctx(request))
    return _token_response(request, pair)


@router.post("/auth/refresh", response_model=AccessTokenResponse)
def refresh(
    request: Request,
    token_id: str = Depends(get_refresh_cookie),
    service: SessionService = Depends(get_session_service),
) -> JSONResponse:
    """Rotate the refresh token. Clients must not retry this call on failure."""
    try:
        pair = service.refresh(token_id, ctx=_request_ctx(request))
    except SessionError as exc:
        return _clear_cookie(session_error_response(exc))
    return _token_response(request, pair)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    token_id: str = Depends(get_refresh_cookie),
    service: SessionService = Depends(get_session_service),
) -> JSONResponse:
    try:
        service.logout(token_id, ctx=_request_ctx(request))
    except SessionError as exc:
        return _clear_cookie(session_error_response(exc))
    return _clear_cookie(JSONResponse(content=MessageResponse(message="Logged out.").model_dump()))


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, user_id: str = Depends(get_current_user_id)) -> MeResponse:
    user = request.app.state.user_store.get_by_id(_request_ctx(request), user_id)
    return MeResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        image_url=user.image_url,
        created_at=user.created_at,
    )
