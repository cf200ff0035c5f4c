"""
auth/authorization.py -- Role checks as plain functions over verified claims.

Three kinds of requirement:
  exact role      -- claims.role is in an allowlist
  minimum role    -- claims.role ranks at or above a threshold in ROLE_HIERARCHY
  self-or-admin   -- claims.subject_id equals the resource owner, or role is ADMIN

Every predicate either returns None (allow) or raises:
  AuthenticationError       -- no claims at all. Always checked first.
  AuthorizationConfigError  -- the requirement itself is broken (empty
                               allowlist, unknown role name, no owner id).
                               This is a programming error, so it is a 500.
  AuthorizationError        -- a valid caller without the right role.

The denial message never names the required or actual role; both go to the
log instead.

Layer rule: no imports from api/ or profiles/. No FastAPI here --
auth/dependencies.py adapts these to Depends().
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.errors import AuthenticationError, AuthorizationConfigError, AuthorizationError
from auth.models import Role, TokenClaims

logger = logging.getLogger("sigl.auth.authorization")

# Lowest to highest. Explicit so that reordering the Role enum cannot change
# who passes a minimum-role check.
ROLE_HIERARCHY: tuple[Role, ...] = (
    Role.APPRENTICE,
    Role.MENTOR,
    Role.EDUCATIONAL_TUTOR,
    Role.PROFESSOR,
    Role.ACCOUNT_MANAGER,
    Role.CENTER_MANAGER,
    Role.ADMIN,
)


def role_rank(role: str | Role) -> int:
    """Position of a role in ROLE_HIERARCHY. Raises ValueError for unknown roles."""
    parsed = Role.parse(role)
    if parsed is None:
        raise ValueError(f"Unknown role: {role!r}")
    return ROLE_HIERARCHY.index(parsed)


def _require_claims(claims: TokenClaims | None) -> TokenClaims:
    if claims is None:
        raise AuthenticationError()
    return claims


def parse_role_set(roles: Iterable[str | Role]) -> frozenset[Role]:
    """Validate an allowlist of role names. Broken allowlists are config errors."""
    parsed: set[Role] = set()
    for raw in roles:
        role = Role.parse(raw)
        if role is None:
            raise AuthorizationConfigError(log_detail=f"Unknown role in authorization requirement: {raw!r}")
        parsed.add(role)
    if not parsed:
        raise AuthorizationConfigError(log_detail="Authorization requirement has an empty role allowlist")
    return frozenset(parsed)


def authorize_roles(claims: TokenClaims | None, allowed: Iterable[str | Role]) -> None:
    """Allow only if the caller's role is one of `allowed`."""
    claims = _require_claims(claims)
    allowed_roles = parse_role_set(allowed)
    if Role.parse(claims.role) not in allowed_roles:
        logger.warning(
            "Access denied: user %s with role %s, required one of %s",
            claims.subject_id,
            claims.role,
            sorted(r.value for r in allowed_roles),
        )
        raise AuthorizationError()


def authorize_minimum_role(claims: TokenClaims | None, minimum: str | Role) -> None:
    """Allow if the caller's role ranks at or above `minimum`."""
    claims = _require_claims(claims)
    threshold = Role.parse(minimum)
    if threshold is None:
        raise AuthorizationConfigError(log_detail=f"Unknown minimum role: {minimum!r}")
    actual = Role.parse(claims.role)
    if actual is None or ROLE_HIERARCHY.index(actual) < ROLE_HIERARCHY.index(threshold):
        logger.warning(
            "Access denied: user %s with role %s, minimum %s",
            claims.subject_id,
            claims.role,
            threshold.value,
        )
        raise AuthorizationError("Access denied. Insufficient role level.", code="INSUFFICIENT_ROLE_LEVEL")


def authorize_self_or_admin(claims: TokenClaims | None, owner_id: str | int | None) -> None:
    """Allow the resource owner or any ADMIN.

    Ids are compared as strings because the subject travels as a string claim
    and path parameters arrive as strings.
    """
    claims = _require_claims(claims)
    if owner_id is None or str(owner_id) == "":
        raise AuthorizationConfigError(log_detail="Self-or-admin check has no resource owner id")
    if Role.parse(claims.role) is Role.ADMIN:
        return
    if str(claims.subject_id) != str(owner_id):
        logger.warning("Access denied: user %s tried to access resource of user %s", claims.subject_id, owner_id)
        raise AuthorizationError("Access denied. You can only access your own resources.", code="SELF_ACCESS_ONLY")
