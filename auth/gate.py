"""
auth/gate.py -- Authorization Gate: declarative route rules + one interpreter.

Every protected URL is described by a RouteRule in ROUTE_TABLE. Nothing else
in the codebase decides who may call what; route handlers trust the gate.

Evaluation for a request (method, path):

  1. Strip the API prefix and resolve the route group by path prefix, on a
     segment boundary. No group -> PASS (the gate does not apply).
  2. First rule in the group whose method and path pattern match. None ->
     MethodNotAllowed (405).
  3. Public rule -> ALLOW without authenticating. Anonymous-only public
     rules first reject callers holding a live session (403).
  4. Protected rule -> TokenService.authenticate(). Failure -> 401.
  5. The caller's roles must intersect the rule's roles. Otherwise 403.
  6. Ownership: SELF requires the captured {id} to equal the caller's id,
     OTHER requires it to differ (privileged transfers cannot target
     yourself). Mismatch -> 403.

ALLOW carries the authenticated identity and, when the access token was
rotated during step 4, the new token pair for the middleware to send back.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from auth.errors import (
    AlreadyAuthenticatedError,
    ForbiddenError,
    MethodNotAllowedError,
    UnauthenticatedError,
)
from auth.models import ID_LENGTH, AccessTokenData, AuthResult, AuthTokens, Role
from auth.service import TokenService

logger = logging.getLogger("benefits.auth.gate")

API_PREFIX = "/api/v1"

_ID_PATTERN = f"(?P<id>[A-Za-z0-9]{{{ID_LENGTH}}})"


class Visibility(str, Enum):
    PUBLIC = "public"
    PROTECTED = "protected"


class Ownership(str, Enum):
    NONE = "none"
    SELF = "self"  # path id must be the caller's id
    OTHER = "other"  # path id must not be the caller's id


class Outcome(str, Enum):
    ALLOW = "allow"
    PASS = "pass"  # path is outside every route group


def compile_path(template: str) -> re.Pattern[str]:
    """Compile '/users/{id}' into an anchored regex capturing the id."""
    parts = [re.escape(part) for part in template.split("{id}")]
    return re.compile("^" + _ID_PATTERN.join(parts) + "$")


@dataclass(frozen=True)
class RouteRule:
    methods: frozenset[str]
    pattern: re.Pattern[str]
    visibility: Visibility = Visibility.PROTECTED
    roles: frozenset[Role] = frozenset()
    ownership: Ownership = Ownership.NONE
    anonymous_only: bool = False

    def match(self, method: str, path: str) -> re.Match[str] | None:
        if method not in self.methods:
            return None
        return self.pattern.match(path)


def rule(
    methods: str,
    path: str,
    *roles: Role,
    public: bool = False,
    anonymous_only: bool = False,
    ownership: Ownership = Ownership.NONE,
) -> RouteRule:
    """Build a RouteRule. methods is a space-separated list ('GET PUT')."""
    if public and roles:
        raise ValueError(f"public rule {path} cannot require roles")
    if not public and not roles:
        raise ValueError(f"protected rule {path} must require at least one role")
    if ownership is not Ownership.NONE and "{id}" not in path:
        raise ValueError(f"ownership check on {path} needs an {{id}} segment")
    return RouteRule(
        methods=frozenset(methods.upper().split()),
        pattern=compile_path(path),
        visibility=Visibility.PUBLIC if public else Visibility.PROTECTED,
        roles=frozenset(roles),
        ownership=ownership,
        anonymous_only=anonymous_only,
    )


@dataclass(frozen=True)
class RouteGroup:
    name: str
    prefix: str
    rules: tuple[RouteRule, ...]

    def owns(self, path: str) -> bool:
        return path == self.prefix or path.startswith(self.prefix + "/")


@dataclass(frozen=True)
class GateDecision:
    outcome: Outcome
    identity: AccessTokenData | None = None
    rotated_tokens: AuthTokens | None = None
    group: str | None = None


ROUTE_TABLE: tuple[RouteGroup, ...] = (
    RouteGroup(
        "city",
        "/cities",
        (
            rule("GET", "/cities", public=True),
            rule("GET", "/cities/{id}", public=True),
            rule("POST", "/cities", Role.ADMIN),
            rule("PUT DELETE", "/cities/{id}", Role.ADMIN),
        ),
    ),
    RouteGroup(
        "user",
        "/users",
        (
            rule("GET", "/users/init-data", public=True),
            rule("POST", "/users", public=True, anonymous_only=True),
            rule("GET PUT DELETE", "/users/{id}", Role.USER, ownership=Ownership.SELF),
        ),
    ),
    RouteGroup(
        "admin",
        "/admins",
        (rule("GET PUT", "/admins/{id}", Role.ADMIN, ownership=Ownership.SELF),),
    ),
    RouteGroup(
        "super-admin",
        "/sa",
        (
            rule("POST", "/sa/admins", Role.SUPER_ADMIN),
            rule("DELETE", "/sa/admins/{id}", Role.SUPER_ADMIN, ownership=Ownership.OTHER),
            rule("POST", "/sa/to-user/{id}", Role.SUPER_ADMIN),
            rule("POST", "/sa/from-user/{id}", Role.SUPER_ADMIN),
            rule("POST", "/sa/to-super/{id}", Role.SUPER_ADMIN, ownership=Ownership.OTHER),
        ),
    ),
    RouteGroup(
        "auth",
        "/auth",
        (
            rule("POST", "/auth/pre-login", public=True, anonymous_only=True),
            rule("POST", "/auth/login", public=True, anonymous_only=True),
            rule("POST", "/auth/logout", Role.USER, Role.ADMIN),
        ),
    ),
)


class AuthorizationGate:
    """Interpret a route table against incoming requests.

    Usage:
        gate = AuthorizationGate(token_service)
        decision = gate.check("GET", "/api/v1/users/<id>", access, refresh)

    check() raises MethodNotAllowedError, UnauthenticatedError, ForbiddenError
    or AlreadyAuthenticatedError; it returns a GateDecision on ALLOW or PASS.
    """

    def __init__(
        self,
        token_service: TokenService,
        groups: tuple[RouteGroup, ...] = ROUTE_TABLE,
        prefix: str = API_PREFIX,
    ) -> None:
        self._tokens = token_service
        self._groups = groups
        self._prefix = prefix.rstrip("/")

    def resolve(self, path: str) -> tuple[RouteGroup, str] | None:
        """Return (group, path relative to the API prefix), or None if ungated."""
        if not (path == self._prefix or path.startswith(self._prefix + "/")):
            return None
        relative = path[len(self._prefix):] or "/"
        if len(relative) > 1:
            relative = relative.rstrip("/")
        for group in self._groups:
            if group.owns(relative):
                return group, relative
        return None

    def check(
        self,
        method: str,
        path: str,
        access_token: str | None,
        refresh_token: str | None,
    ) -> GateDecision:
        resolved = self.resolve(path)
        if resolved is None:
            return GateDecision(Outcome.PASS)
        group, relative = resolved
        method = method.upper()

        matched: tuple[RouteRule, re.Match[str]] | None = None
        for candidate in group.rules:
            m = candidate.match(method, relative)
            if m is not None:
                matched = (candidate, m)
                break
        if matched is None:
            self._deny(method, path, "no matching rule")
            raise MethodNotAllowedError()
        route_rule, path_match = matched

        if route_rule.visibility is Visibility.PUBLIC:
            if route_rule.anonymous_only and self._tokens.has_live_session(refresh_token):
                self._deny(method, path, "active session on anonymous-only route")
                raise AlreadyAuthenticatedError()
            return GateDecision(Outcome.ALLOW, group=group.name)

        try:
            result = self._tokens.authenticate(access_token, refresh_token)
        except UnauthenticatedError:
            self._deny(method, path, "authentication failed")
            raise
        identity = result.identity

        if not (identity.roles & route_rule.roles):
            self._deny(method, path, f"user {identity.user_id} lacks required role")
            raise _forbidden("Insufficient role for this resource.", result)

        if route_rule.ownership is not Ownership.NONE:
            is_self = path_match.group("id") == identity.user_id
            if route_rule.ownership is Ownership.SELF and not is_self:
                self._deny(method, path, f"user {identity.user_id} is not the resource owner")
                raise _forbidden("You can only access your own resource.", result)
            if route_rule.ownership is Ownership.OTHER and is_self:
                self._deny(method, path, f"user {identity.user_id} targeted themselves")
                raise _forbidden("This operation cannot target your own account.", result)

        return GateDecision(
            Outcome.ALLOW,
            identity=identity,
            rotated_tokens=result.rotated_tokens,
            group=group.name,
        )

    @staticmethod
    def _deny(method: str, path: str, reason: str) -> None:
        logger.warning("Gate denied %s %s: %s", method, path, reason)


def _forbidden(message: str, result: AuthResult) -> ForbiddenError:
    """ForbiddenError that still carries a pair rotated during authentication.

    The old refresh token row is already gone at this point, so the client
    must receive the new pair even though the request itself is refused.
    """
    error = ForbiddenError(message)
    error.rotated_tokens = result.rotated_tokens
    return error
