"""
auth/errors.py -- Typed failures raised by the auth core.

Every error carries the HTTP status and the machine-readable code it maps to,
so the gate middleware and the API exception handler render them the same
way without a lookup table. Store and JWT library errors are translated into
these classes inside auth/; nothing above auth/ sees a raw SQLAlchemy or jose
exception.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class for auth failures."""

    status_code: int = 500
    code: str = "auth_error"
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None, detail: Any = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Return the {"code", "message", "detail"} error payload."""
        return {"code": self.code, "message": self.message, "detail": self.detail}


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class ExpiredError(AuthError):
    # A stale login code answers like a missing one (404), with its own code.
    status_code = 404
    code = "expired"
    default_message = "Expired."


class InvalidFormatError(AuthError):
    status_code = 401
    code = "invalid_token"
    default_message = "Malformed or unsigned token."


class UnauthenticatedError(AuthError):
    """Authentication failed.

    clear_session is set when the session cookie the client sent is dead
    (unknown, expired or just revoked); the response should expire it.
    """

    status_code = 401
    code = "unauthenticated"
    default_message = "Authentication required."

    def __init__(self, message: str | None = None, detail: Any = None, *, clear_session: bool = False) -> None:
        super().__init__(message, detail)
        self.clear_session = clear_session


class ForbiddenError(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied."


class AlreadyAuthenticatedError(ForbiddenError):
    code = "already_authenticated"
    default_message = "This action is not available with an active session."


class MethodNotAllowedError(AuthError):
    status_code = 405
    code = "method_not_allowed"
    default_message = "Method not allowed."


class MailDeliveryError(AuthError):
    """The mail transport failed. Transient; the caller decides whether to retry."""

    status_code = 503
    code = "mail_unavailable"
    default_message = "Could not deliver the email. Try again later."


class StoreUnavailableError(AuthError):
    """The auth database could not be reached or rejected the operation."""

    status_code = 503
    code = "store_unavailable"
    default_message = "The service is temporarily unavailable."
