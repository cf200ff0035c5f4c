"""
API request and response models for the SIGL REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
profiles/models.py, which own the internal domain representation. Route
handlers map between the two.

JSON keys are camelCase on the wire (accessToken, currentPassword, ...).
Python attributes stay snake_case; _CamelModel sets the alias generator and
populate_by_name so both spellings are accepted on input. FastAPI serializes
response_model output by alias.

Request bodies declare their fields Optional on purpose: a missing email or
password is answered by the session controller with a specific 400 code
(MISSING_CREDENTIALS, MISSING_FIELDS) instead of a generic 422.

Separation of concerns: auth/ and profiles/ models = domain truth; api/
models = API contract.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import TokenClaims, TokenPair
from profiles.models import User


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenCamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/auth/login."""

    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=256)


class ChangePasswordRequest(_CamelModel):
    """Request body for POST /api/v1/auth/change-password."""

    current_password: Optional[str] = Field(default=None, max_length=256)
    new_password: Optional[str] = Field(default=None, max_length=256)


class PasswordResetRequest(_CamelModel):
    """Request body for POST /api/v1/auth/request-reset."""

    email: Optional[str] = Field(default=None, max_length=255)


class ResetPasswordRequest(_CamelModel):
    """Request body for POST /api/v1/auth/reset-password."""

    token: Optional[str] = Field(default=None, max_length=2048)
    new_password: Optional[str] = Field(default=None, max_length=256)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class TokenPairResponse(_FrozenCamelModel):
    """Token bundle: accessToken, refreshToken, tokenType ("Bearer"), expiresIn (seconds)."""

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )


class UserSummary(_FrozenCamelModel):
    id: int
    username: str
    email: str
    role: str


class LoginResponse(_FrozenCamelModel):
    """Response body for POST /api/v1/auth/login."""

    user: UserSummary
    tokens: TokenPairResponse


class MeResponse(_FrozenCamelModel):
    """Identity carried by the presented access token. No database read."""

    user_id: str
    email: str
    role: str
    expires_at: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: TokenClaims) -> "MeResponse":
        return cls(
            user_id=claims.subject_id,
            email=claims.email or "",
            role=claims.role or "",
            expires_at=claims.expires_at.isoformat() if claims.expires_at else None,
        )


class AuthStatsResponse(_FrozenCamelModel):
    """Response for GET /api/v1/auth/stats. Counts over all credential rows."""

    total_active_accounts: int
    total_inactive_accounts: int
    accounts_with_failed_attempts: int
    locked_accounts: int
    accounts_with_refresh_tokens: int


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(_CamelModel):
    """Request body for POST /api/v1/users and POST /api/v1/users/register.

    Self-registration refuses any role other than APPRENTICE.
    """

    username: Optional[str] = Field(default=None, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=256)
    role: Optional[str] = Field(default=None, max_length=30)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class UserUpdate(_CamelModel):
    """Request body for PUT /api/v1/users/{user_id}. Omitted fields stay as they are.

    Unknown fields are refused, so a password sent here is a 422 rather than
    silently ignored.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    username: Optional[str] = Field(default=None, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255)
    role: Optional[str] = Field(default=None, max_length=30)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class UserResponse(_FrozenCamelModel):
    id: int
    username: str
    email: str
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Factory Method: the domain -> transport mapping lives next to the model."""
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            first_name=user.first_name,
            last_name=user.last_name,
            created_at=user.created_at,
        )


class UserEnvelope(_FrozenCamelModel):
    user: UserResponse
