"""
auth/issuer.py -- Credential Issuer: the passwordless login flow.

  pre_login(email)        unknown email -> NotFound
                          otherwise a fresh login code is stored and emailed
  login(email, code)      unknown email -> NotFound
                          wrong / missing code -> NotFound, stale code -> Expired
                          the code is deleted (only if it still matches)
                          before tokens are issued, so it is redeemed once
  logout(refresh_value)   deletes the refresh token row; an unknown value is
                          a logged no-op

The issuer talks to the Token Service for every credential and to the mail
dispatcher for delivery. It knows nothing about HTTP or the gate.
"""

from __future__ import annotations

import logging

from auth.errors import NotFoundError
from auth.mail import MailDispatcher, send_login_code
from auth.models import LoginResult, User, UserProfile
from auth.service import TokenService
from auth.store import UserStore, store_errors

logger = logging.getLogger("benefits.auth.issuer")


def build_profile(user: User) -> UserProfile:
    """Public view of a user: id, display name and sorted role labels."""
    return UserProfile(id=user.id, name=user.name, roles=sorted(role.value for role in user.roles))


class CredentialIssuer:
    def __init__(self, store: UserStore, token_service: TokenService, mailer: MailDispatcher) -> None:
        self._store = store
        self._tokens = token_service
        self._mailer = mailer

    def _find_user(self, email: str) -> User:
        with store_errors():
            user = self._store.get_by_email(email)
        if user is None:
            raise NotFoundError("No user is registered with this email.")
        return user

    def pre_login(self, email: str) -> None:
        """Generate a login code for the user and email it.

        MailDeliveryError propagates unchanged; the stored code stays valid
        so a retried pre_login simply replaces it.
        """
        user = self._find_user(email)
        code = self._tokens.generate_login_code(user.id)
        send_login_code(
            self._mailer,
            user.email,
            user.name,
            code,
            expire_seconds=self._tokens.settings.login_code_expire_seconds,
        )
        logger.info("Login code sent to user %s", user.id)

    def login(self, email: str, code: int) -> LoginResult:
        """Exchange a valid login code for a new token pair and the user's profile."""
        user = self._find_user(email)
        self._tokens.validate_login_code(user.id, code)
        # The delete is the commit point: a concurrent login with the same
        # code may have passed validation too, but only one delete succeeds.
        if not self._tokens.revoke_login_code(user_id=user.id, code=code):
            logger.warning("Login code for user %s was already used", user.id)
            raise NotFoundError("Login code not found.")
        tokens = self._tokens.issue_auth_tokens(user.id)
        # Roles on the profile match the roles signed into the access token.
        user.roles = set(tokens.identity.roles)
        logger.info("User %s logged in", user.id)
        return LoginResult(profile=build_profile(user), tokens=tokens)

    def logout(self, refresh_value: str | None) -> bool:
        """Revoke a refresh token. Returns False when there was nothing to revoke."""
        if not refresh_value:
            logger.warning("Logout without a refresh token")
            return False
        revoked = self._tokens.revoke_refresh_token(refresh_value)
        if not revoked:
            logger.warning("Logout with an unknown refresh token")
        return revoked
