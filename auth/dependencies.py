"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and
role-based authorization.

get_current_claims() reads "Authorization: Bearer <access token>", verifies
it with the process-wide TokenService on app.state and stores the claims on
request.state.claims. Verification is stateless: no database read, so a
deactivated account keeps working until its access token expires (at most
ACCESS_TOKEN_EXPIRE_SECONDS).

The require_* factories return dependencies that run get_current_claims and
then one predicate from auth/authorization.py:

    @router.get("/users", dependencies=[Depends(staff_only)])
    @router.get("/users/{user_id}")
    async def route(claims: TokenClaims = Depends(require_self_or_admin("user_id"))): ...

Requirements are validated when the factory is called, so a typo in a role
name fails at import time instead of on the first request.

Layer rule: no imports from profiles/ or api/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.authorization import (
    authorize_minimum_role,
    authorize_roles,
    authorize_self_or_admin,
    parse_role_set,
)
from auth.errors import AuthenticationError, AuthorizationConfigError, BearerFormatError, TokenInvalidError
from auth.models import Role, TokenClaims, TokenKind
from auth.tokens import TokenService, extract_bearer


def get_current_claims(request: Request) -> TokenClaims:
    """Require a valid access token. Raises a 401 AuthError otherwise.

    Error codes: MISSING_TOKEN, INVALID_HEADER_FORMAT, TOKEN_EXPIRED,
    INVALID_TOKEN, TOKEN_NOT_ACTIVE, INVALID_TOKEN_TYPE, INVALID_TOKEN_PAYLOAD.
    """
    header = request.headers.get("Authorization")
    if not header:
        raise AuthenticationError("Access denied. No token provided.", code="MISSING_TOKEN")
    if not header.startswith("Bearer "):
        raise BearerFormatError()
    token = extract_bearer(header)

    tokens: TokenService = request.app.state.tokens
    claims = tokens.verify(token, TokenKind.ACCESS)
    if not claims.email or Role.parse(claims.role) is None:
        raise TokenInvalidError("Invalid token payload.", code="INVALID_TOKEN_PAYLOAD")

    request.state.claims = claims
    return claims


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


def require_roles(*roles: str | Role) -> Callable[..., TokenClaims]:
    """Dependency allowing only the listed roles."""
    allowed = parse_role_set(roles)

    def dependency(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
        authorize_roles(claims, allowed)
        return claims

    return dependency


def require_minimum_role(minimum: str | Role) -> Callable[..., TokenClaims]:
    """Dependency allowing `minimum` and every role ranked above it."""
    threshold = Role.parse(minimum)
    if threshold is None:
        raise AuthorizationConfigError(log_detail=f"Unknown minimum role: {minimum!r}")

    def dependency(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
        authorize_minimum_role(claims, threshold)
        return claims

    return dependency


def require_self_or_admin(param: str = "user_id") -> Callable[..., TokenClaims]:
    """Dependency allowing the owner named by path parameter `param`, or ADMIN."""
    if not param:
        raise AuthorizationConfigError(log_detail="Self-or-admin dependency needs a path parameter name")

    def dependency(request: Request, claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
        owner_id = request.path_params.get(param)
        if owner_id is None:
            raise AuthorizationConfigError(log_detail=f"Route has no path parameter {param!r}")
        authorize_self_or_admin(claims, owner_id)
        return claims

    return dependency


# ---------------------------------------------------------------------------
# Named shortcuts
# ---------------------------------------------------------------------------

admin_only = require_roles(Role.ADMIN)
# Staff is every role from EDUCATIONAL_TUTOR up.
staff_only = require_minimum_role(Role.EDUCATIONAL_TUTOR)
