"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these classes own the shape.

Role is a closed enum. Every role check in the gate and every roles claim in
an access token goes through it, so an unknown label can never grant access.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

# Length of generated user ids. The gate's path matcher captures exactly this
# many alphanumeric characters.
ID_LENGTH = 20

_ID_ALPHABET = string.ascii_letters + string.digits


def utcnow() -> datetime:
    """Default clock for everything that compares against a TTL."""
    return datetime.now(timezone.utc)


def generate_id(length: int = ID_LENGTH) -> str:
    """Random alphanumeric id (also the alphabet used for refresh tokens)."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


class Role(str, Enum):
    USER = "ROLE_USER"
    ADMIN = "ROLE_ADMIN"
    SUPER_ADMIN = "ROLE_SUPER_ADMIN"


@dataclass
class User:
    """A registered person in the benefits directory.

    The auth core only reads users. Role membership is loaded separately
    (UserStore.get_roles) every time tokens are issued, so grants and
    revocations made elsewhere show up on the next issuance.
    """

    email: str
    name: str
    id: str | None = None
    roles: set[Role] = field(default_factory=set)
    created_at: str | None = None


@dataclass
class RefreshToken:
    """Persisted session secret. At most one row per user (user_id is the key)."""

    user_id: str
    value: str
    expires_at: datetime


@dataclass
class LoginCode:
    """Persisted one-time login code. At most one row per user."""

    user_id: str
    code: int
    expires_at: datetime


@dataclass(frozen=True)
class AccessTokenData:
    """Identity asserted by a valid access token (never persisted)."""

    user_id: str
    roles: frozenset[Role]
    expires_at: datetime | None = None


@dataclass(frozen=True)
class AuthTokens:
    """A freshly issued access/refresh pair."""

    access_token: str
    refresh_token: str
    identity: AccessTokenData


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a successful authentication.

    rotated_tokens is set only when the access token had expired and a new
    pair was issued; the caller must hand that pair back to the client.
    """

    identity: AccessTokenData
    rotated_tokens: AuthTokens | None = None


@dataclass(frozen=True)
class UserProfile:
    id: str
    name: str
    roles: list[str]


@dataclass(frozen=True)
class LoginResult:
    profile: UserProfile
    tokens: AuthTokens
