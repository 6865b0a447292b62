"""
auth/middleware.py -- HTTP middleware that runs the Authorization Gate.

Registered on the app with app.middleware("http")(authorization_gate). It is
the innermost middleware, so TrustedHost, CORS preflight and rate limiting
have already run when it sees a request.

Per request:
  - access token from 'Authorization: Bearer <jwt>'
  - refresh token from the session cookie (name from settings)
  - gate.check() in Starlette's threadpool (it does blocking store I/O)
  - AuthError -> JSON error envelope with the error's status code; a 401
    for a dead or revoked session also expires the session cookie
  - ALLOW -> request.state.identity / request.state.rotated_tokens, then the
    route handler runs

After the handler returns, a rotated pair still present on request.state is
written to the response: the new access token in the Authorization header,
the new refresh token in the session cookie. A handler that ends the session
(logout) clears request.state.rotated_tokens so nothing is re-issued.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from auth.errors import AuthError
from auth.models import AuthTokens
from auth.tokens import clear_refresh_cookie, extract_bearer_token, set_access_header, set_refresh_cookie


def write_tokens(response, tokens: AuthTokens, settings) -> None:
    """Send an access/refresh pair to the client."""
    set_access_header(response, tokens.access_token)
    set_refresh_cookie(
        response,
        tokens.refresh_token,
        name=settings.refresh_cookie_name,
        max_age=settings.refresh_token_expire_seconds,
        secure=settings.secure_cookies,
    )


async def authorization_gate(request: Request, call_next):
    gate = request.app.state.gate
    settings = request.app.state.settings

    access_token = extract_bearer_token(request.headers.get("Authorization"))
    refresh_token = request.cookies.get(settings.refresh_cookie_name)

    try:
        decision = await run_in_threadpool(
            gate.check, request.method, request.url.path, access_token, refresh_token
        )
    except AuthError as exc:
        response = JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})
        rotated = getattr(exc, "rotated_tokens", None)
        if rotated is not None:
            write_tokens(response, rotated, settings)
        elif refresh_token and getattr(exc, "clear_session", False):
            clear_refresh_cookie(response, name=settings.refresh_cookie_name, secure=settings.secure_cookies)
        return response

    request.state.identity = decision.identity
    request.state.rotated_tokens = decision.rotated_tokens

    response = await call_next(request)

    rotated = getattr(request.state, "rotated_tokens", None)
    if rotated is not None:
        write_tokens(response, rotated, settings)
    return response
