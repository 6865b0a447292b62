"""
auth/dependencies.py -- FastAPI Depends() helpers for gated routes.

The Authorization Gate middleware has already authenticated the request and
enforced roles and ownership before any handler runs. These helpers only hand
its results to route handlers:

  get_identity()          the AccessTokenData stored by the gate; HTTP 401 if
                          the route was reached without one (misconfigured
                          route table)
  get_session_token()     the refresh token that identifies this session: the
                          one rotated by the gate during this request, or the
                          one in the session cookie

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import AccessTokenData


def get_identity(request: Request) -> AccessTokenData:
    """Require a gate-authenticated caller.

    Use as a FastAPI dependency:
        @router.get("/users/{user_id}")
        def route(identity: AccessTokenData = Depends(get_identity)): ...
    """
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthenticated", "message": "Authentication required.", "detail": None},
        )
    return identity


def get_session_token(request: Request) -> str | None:
    rotated = getattr(request.state, "rotated_tokens", None)
    if rotated is not None:
        return rotated.refresh_token
    return request.cookies.get(request.app.state.settings.refresh_cookie_name)
