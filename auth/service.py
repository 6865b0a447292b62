"""
auth/service.py -- Token Service: access tokens, refresh tokens, login codes.

One service owns every credential the auth core hands out:

  generate_login_code()   short-lived numeric code, one row per user
  issue_auth_tokens()     signed access token + persisted refresh token
  validate_*()            typed failures: InvalidFormat, Expired, NotFound
  revoke_*()              idempotent deletes
  authenticate()          the per-request algorithm used by the gate

authenticate() in brief:
  1. The refresh token must exist and be unexpired. Otherwise the request is
     unauthenticated, whatever the access token says.
  2. A valid access token is returned as-is.
     An expired (but correctly signed) access token triggers a sliding-session
     rotation: a new pair is issued for the refresh token's user and returned
     to the caller, who must send it back to the client.
     A malformed or absent access token revokes the refresh token before
     failing, cutting short the life of a possibly stolen pair.

Concurrency: two requests that both rotate for the same user each write a
refresh token row; the last write wins and the other client's cookie goes
stale (NotFound on its next request). That is accepted, not locked against.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import (
    AuthError,
    ExpiredError,
    InvalidFormatError,
    NotFoundError,
    UnauthenticatedError,
)
from auth.models import AccessTokenData, AuthResult, AuthTokens, LoginCode, RefreshToken, utcnow
from auth.store import UserStore, store_errors
from auth.tokens import (
    create_access_token,
    decode_access_token,
    generate_login_code,
    generate_refresh_token,
)
from core.config import Settings

logger = logging.getLogger("benefits.auth.service")


class TokenService:
    """Mint and check every credential the auth core issues."""

    def __init__(
        self,
        store: UserStore,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock

    @property
    def settings(self) -> Settings:
        return self._settings

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Login codes
    # ------------------------------------------------------------------

    def generate_login_code(self, user_id: str) -> int:
        """Create a login code for user_id, replacing any previous one."""
        code = generate_login_code(self._settings.login_code_length)
        expires_at = self.now() + timedelta(seconds=self._settings.login_code_expire_seconds)
        with store_errors():
            self._store.save_login_code(LoginCode(user_id=user_id, code=code, expires_at=expires_at))
        logger.info("Login code issued for user %s", user_id)
        return code

    def validate_login_code(self, user_id: str, code: int) -> LoginCode:
        """Check the user's stored code against the supplied one.

        Raises NotFoundError when the user has no code or it does not match,
        ExpiredError when it matches but its TTL has passed.
        """
        with store_errors():
            stored = self._store.get_login_code(user_id)
        if stored is None or stored.code != code:
            raise NotFoundError("Login code not found.")
        if self.now() >= stored.expires_at:
            raise ExpiredError("Login code has expired.")
        return stored

    def revoke_login_code(self, *, user_id: str | None = None, code: int | None = None) -> bool:
        """Delete a login code by owner, by value or both. Returns False when nothing matched."""
        with store_errors():
            return self._store.delete_login_code(user_id=user_id, code=code)

    # ------------------------------------------------------------------
    # Access + refresh tokens
    # ------------------------------------------------------------------

    def issue_auth_tokens(self, user_id: str) -> AuthTokens:
        """Sign an access token with the user's current roles and persist a new refresh token.

        Any refresh token the user already had is replaced.
        """
        now = self.now()
        access_expires_at = now + timedelta(seconds=self._settings.access_token_expire_seconds)
        refresh_value = generate_refresh_token(self._settings.refresh_token_length)
        with store_errors():
            roles = frozenset(self._store.get_roles(user_id))
            self._store.save_refresh_token(
                RefreshToken(
                    user_id=user_id,
                    value=refresh_value,
                    expires_at=now + timedelta(days=self._settings.refresh_token_expire_days),
                )
            )
        access_token = create_access_token(
            user_id,
            roles,
            secret_key=self._settings.secret_key,
            algorithm=self._settings.jwt_algorithm,
            issued_at=now,
            expires_at=access_expires_at,
        )
        logger.info("Auth tokens issued for user %s", user_id)
        return AuthTokens(
            access_token=access_token,
            refresh_token=refresh_value,
            identity=AccessTokenData(user_id=user_id, roles=roles, expires_at=access_expires_at),
        )

    def validate_access_token(self, token: str) -> AccessTokenData:
        """Raises InvalidFormatError or ExpiredError; returns the embedded identity."""
        return decode_access_token(
            token,
            secret_key=self._settings.secret_key,
            algorithm=self._settings.jwt_algorithm,
            now=self.now(),
        )

    def validate_refresh_token(self, value: str) -> str:
        """Return the owning user id. Raises NotFoundError or ExpiredError."""
        with store_errors():
            stored = self._store.get_refresh_token(value)
        if stored is None:
            raise NotFoundError("Refresh token not found.")
        if self.now() >= stored.expires_at:
            raise ExpiredError("Refresh token has expired.")
        return stored.user_id

    def revoke_refresh_token(self, value: str) -> bool:
        """Delete the refresh token row. Returns False if it did not exist."""
        with store_errors():
            deleted = self._store.delete_refresh_token(value)
        if deleted:
            logger.info("Refresh token revoked")
        return deleted

    def has_live_session(self, refresh_value: str | None) -> bool:
        """True when refresh_value names an existing, unexpired refresh token."""
        if not refresh_value:
            return False
        try:
            self.validate_refresh_token(refresh_value)
        except (NotFoundError, ExpiredError):
            return False
        return True

    # ------------------------------------------------------------------
    # Per-request authentication
    # ------------------------------------------------------------------

    def authenticate(self, access_token: str | None, refresh_token: str | None) -> AuthResult:
        """Authenticate a request from its access and refresh token strings.

        Raises UnauthenticatedError on every failure path. Store failures
        fail closed the same way. clear_session is set on the error when the
        refresh token is unknown, expired or was revoked here; a store failure
        leaves it unset so a transient outage does not end the session.
        """
        try:
            return self._authenticate(access_token, refresh_token)
        except UnauthenticatedError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Auth store failure during authentication")
            raise UnauthenticatedError() from exc
        except AuthError as exc:
            raise UnauthenticatedError(exc.message) from exc

    def _authenticate(self, access_token: str | None, refresh_token: str | None) -> AuthResult:
        if not refresh_token:
            raise UnauthenticatedError("Missing session.")
        try:
            user_id = self.validate_refresh_token(refresh_token)
        except (NotFoundError, ExpiredError) as exc:
            logger.warning("Refresh token rejected: %s", exc.message)
            raise UnauthenticatedError("Session is no longer valid.", clear_session=True) from exc

        if not access_token:
            self.revoke_refresh_token(refresh_token)
            logger.warning("Missing access token for user %s; session revoked", user_id)
            raise UnauthenticatedError("Missing access token.", clear_session=True)

        try:
            identity = self.validate_access_token(access_token)
        except ExpiredError:
            rotated = self.issue_auth_tokens(user_id)
            logger.info("Access token expired; rotated session for user %s", user_id)
            return AuthResult(identity=rotated.identity, rotated_tokens=rotated)
        except InvalidFormatError as exc:
            self.revoke_refresh_token(refresh_token)
            logger.warning("Invalid access token for user %s; session revoked: %s", user_id, exc.message)
            raise UnauthenticatedError("Invalid access token.", clear_session=True) from exc
        return AuthResult(identity=identity)
