"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
properties). Stores and services do the work.

Layer rule: no imports from api/ or profiles/.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

# Deliberately loose: one @, no whitespace, a dot in the domain part.
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class Role(str, Enum):
    """Fixed set of business roles. Values are what gets stored and signed."""

    APPRENTICE = "APPRENTICE"
    MENTOR = "MENTOR"
    EDUCATIONAL_TUTOR = "EDUCATIONAL_TUTOR"
    ACCOUNT_MANAGER = "ACCOUNT_MANAGER"
    CENTER_MANAGER = "CENTER_MANAGER"
    PROFESSOR = "PROFESSOR"
    ADMIN = "ADMIN"

    @classmethod
    def parse(cls, value: str | Role | None) -> Role | None:
        """Return the Role for a name, or None when it is not a known role."""
        if isinstance(value, Role):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class Credential:
    """One credential record per user, owned by the auth subsystem.

    refresh_token holds the fingerprint of the single currently valid refresh
    token (see TokenService.fingerprint), or None when the user has no active
    session. email/role/username are filled in only by lookups that join the
    users table.
    """

    user_id: int
    password_hash: str
    id: int | None = None
    refresh_token: str | None = None
    is_active: bool = True
    failed_login_attempts: int = 0
    account_locked_until: datetime | None = None
    last_login: datetime | None = None
    created_at: str | None = None
    updated_at: str | None = None
    # Joined from users
    email: str | None = None
    username: str | None = None
    role: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of an access or refresh token.

    email and role are None for refresh tokens, which are never trusted for
    authorization decisions.
    """

    subject_id: str
    type: TokenKind
    email: str | None = None
    role: str | None = None
    token_id: str | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
