"""
api/routes/v1/auth.py -- Passwordless login REST endpoints.

Routes:
  POST /api/v1/auth/pre-login   -- email a one-time login code
  POST /api/v1/auth/login       -- exchange email + code for a token pair
  POST /api/v1/auth/logout      -- revoke the session refresh token, clear cookie

Access control is decided by the Authorization Gate before these handlers run
(see auth/gate.py ROUTE_TABLE): pre-login and login are public but refused
with 403 while a live session cookie is present; logout requires USER or ADMIN.

Security:
  pre-login and login are rate-limited per IP (LOGIN_RATE_LIMIT).
  Cache-Control: no-store on responses that carry credentials.
  The refresh token only ever travels in an httpOnly cookie.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import LoginRequest, MessageResponse, PreLoginRequest, ProfileResponse
from auth.dependencies import get_identity, get_session_token
from auth.issuer import CredentialIssuer
from auth.middleware import write_tokens
from auth.models import AccessTokenData
from auth.tokens import clear_refresh_cookie

router = APIRouter()


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/pre-login", response_model=MessageResponse)
def pre_login(request: Request, body: PreLoginRequest) -> MessageResponse:
    """Send a login code to a registered email address.

    404 for an unknown address; 503 when the mail transport fails (the client
    may simply ask again, which replaces the stored code).
    """
    issuer: CredentialIssuer = request.app.state.issuer
    issuer.pre_login(body.email)
    return MessageResponse(message="Login code sent.")


@limiter.limit(login_rate_limit)
@router.post("/auth/login", response_model=ProfileResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Exchange a login code for an access token (header) and refresh token (cookie).

    The code is single-use: a second attempt with the same code is a 404.
    """
    issuer: CredentialIssuer = request.app.state.issuer
    result = issuer.login(body.email, body.code)
    resp = JSONResponse(
        status_code=200,
        content=ProfileResponse.from_profile(result.profile).model_dump(),
    )
    write_tokens(resp, result.tokens, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    identity: AccessTokenData = Depends(get_identity),
    session_token: str | None = Depends(get_session_token),
) -> JSONResponse:
    """Revoke the current session and expire the cookie.

    If the gate rotated the session during this same request, the new refresh
    token is the one revoked and the rotated pair is not sent back.
    """
    issuer: CredentialIssuer = request.app.state.issuer
    settings = request.app.state.settings
    issuer.logout(session_token)
    request.state.rotated_tokens = None

    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_refresh_cookie(resp, name=settings.refresh_cookie_name, secure=settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp
