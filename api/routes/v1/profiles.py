"""
api/routes/v1/profiles.py -- Caller profile reads for users and admins.

Routes:
  GET /api/v1/users/{user_id}    -- USER, own id only
  GET /api/v1/admins/{user_id}   -- ADMIN, own id only

Role and ownership checks happen in the Authorization Gate; by the time these
handlers run, user_id is the caller's own id.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import ProfileResponse
from auth.dependencies import get_identity
from auth.errors import NotFoundError
from auth.issuer import build_profile
from auth.models import AccessTokenData
from auth.store import UserStore, store_errors

router = APIRouter()


def _load_profile(request: Request, user_id: str) -> ProfileResponse:
    user_store: UserStore = request.app.state.user_store
    with store_errors():
        user = user_store.get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found.")
    return ProfileResponse.from_profile(build_profile(user))


@router.get("/users/{user_id}", response_model=ProfileResponse)
def get_user(
    user_id: str,
    request: Request,
    identity: AccessTokenData = Depends(get_identity),
) -> ProfileResponse:
    return _load_profile(request, user_id)


@router.get("/admins/{user_id}", response_model=ProfileResponse)
def get_admin(
    user_id: str,
    request: Request,
    identity: AccessTokenData = Depends(get_identity),
) -> ProfileResponse:
    return _load_profile(request, user_id)
