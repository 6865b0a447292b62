"""
auth/tokens.py -- JWT, random secret, and transport helpers.

Security design decisions:
  JWT: python-jose, HMAC (HS256 by default). Access tokens carry the user id
       (sub), the role labels held at issue time, and an integer expiry. They
       are never stored: validity is signature + expiry, nothing else.

       Expiry is checked against the caller's clock after jose has verified
       the signature (jose's own exp check is turned off). An expired token
       is therefore always a token we signed, which is what allows the
       sliding-session rotation in TokenService.authenticate().

  Refresh tokens: opaque alphanumeric strings from the secrets module, stored
       server-side. Nothing about the user is encoded in them.

  Login codes: fixed-length decimal numbers with a non-zero first digit,
       drawn with secrets.randbelow().

  Keys: the signing key and algorithm are passed in by the caller (taken from
       the Settings value built at startup). Nothing here reads configuration.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone

from jose import JWTError, jwt

from auth.errors import ExpiredError, InvalidFormatError
from auth.models import AccessTokenData, Role, generate_id

_TOKEN_TYPE = "access"

# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(
    user_id: str,
    roles: set[Role] | frozenset[Role],
    *,
    secret_key: str,
    algorithm: str,
    issued_at: datetime,
    expires_at: datetime,
) -> str:
    """Encode a signed access token for user_id holding roles until expires_at."""
    payload = {
        "sub": user_id,
        "roles": sorted(Role(r).value for r in roles),
        "type": _TOKEN_TYPE,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def decode_access_token(token: str, *, secret_key: str, algorithm: str, now: datetime) -> AccessTokenData:
    """Verify and decode an access token.

    Raises:
        InvalidFormatError: bad encoding, bad signature, wrong token type,
            missing claims or an unknown role label.
        ExpiredError: the token is correctly signed but now >= exp.
    """
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm], options={"verify_exp": False})
    except JWTError as exc:
        raise InvalidFormatError(f"Invalid access token: {exc}") from exc

    user_id = payload.get("sub")
    raw_roles = payload.get("roles")
    exp = payload.get("exp")
    if payload.get("type") != _TOKEN_TYPE or not isinstance(user_id, str) or not user_id:
        raise InvalidFormatError("Access token is missing its subject or type.")
    if not isinstance(raw_roles, list) or not isinstance(exp, int):
        raise InvalidFormatError("Access token is missing roles or expiry.")
    try:
        roles = frozenset(Role(r) for r in raw_roles)
    except ValueError as exc:
        raise InvalidFormatError("Access token carries an unknown role.") from exc

    expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
    if now >= expires_at:
        raise ExpiredError("Access token has expired.")
    return AccessTokenData(user_id=user_id, roles=roles, expires_at=expires_at)


# ---------------------------------------------------------------------------
# Random secrets
# ---------------------------------------------------------------------------


def generate_refresh_token(length: int) -> str:
    """Opaque alphanumeric refresh token value."""
    return generate_id(length)


def generate_login_code(length: int) -> int:
    """Random decimal code of exactly `length` digits, first digit non-zero."""
    if length < 1:
        raise ValueError(f"length must be positive, got {length}")
    low = 10 ** (length - 1)
    return low + secrets.randbelow(9 * low)


# ---------------------------------------------------------------------------
# Transport helpers
# ---------------------------------------------------------------------------


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an 'Authorization: Bearer <token>' value, or None."""
    parts = (authorization or "").strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def set_access_header(response, token: str) -> None:
    response.headers["Authorization"] = f"Bearer {token}"


def set_refresh_cookie(response, token: str, *, name: str, max_age: int, secure: bool) -> None:
    """Write the refresh token as an httpOnly session cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POSTs (CSRF mitigation).
    max_age: the refresh TTL in seconds, so cookie and row expire together.
    """
    response.set_cookie(
        name,
        value=token,
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=secure,
    )


def clear_refresh_cookie(response, *, name: str, secure: bool) -> None:
    """Expire the session cookie immediately (Max-Age=0)."""
    response.set_cookie(
        name,
        value="",
        max_age=0,
        path="/",
        httponly=True,
        samesite="lax",
        secure=secure,
    )
