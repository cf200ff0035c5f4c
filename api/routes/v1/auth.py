"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login            -- email + password; returns user and token pair
  POST /api/v1/auth/logout           -- drops the stored refresh token (requires access token)
  POST /api/v1/auth/refresh          -- Bearer refresh token -> new access (+ rotated refresh) token
  POST /api/v1/auth/change-password  -- requires access token; revokes the refresh token
  POST /api/v1/auth/request-reset    -- always 200 with the same message
  POST /api/v1/auth/reset-password   -- always 400 INVALID_RESET_TOKEN (tokens are never issued)
  GET  /api/v1/auth/me               -- identity from the access token
  GET  /api/v1/auth/stats            -- credential statistics (admin only)

Security:
  [H2] POST /login and POST /request-reset are rate-limited per IP
       (LOGIN_RATE_LIMIT, default 10/minute).
  [C1] Timing equalization lives in AuthSessionController.login -- route code
       must not look users up itself.
  [M5] Cache-Control: no-store on every response that carries tokens.

Routes stay thin: parse, call one AuthSessionController method, map the
result to a response model. Every failure is an AuthError rendered by the
handler in api/main.py.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthStatsResponse,
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    PasswordResetRequest,
    ResetPasswordRequest,
    TokenPairResponse,
    UserSummary,
)
from auth.dependencies import admin_only, get_current_claims
from auth.models import TokenClaims
from auth.sessions import AuthSessionController
from auth.store import CredentialStore
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/login:            public, rate limited
# - POST /api/v1/auth/refresh:          public (the refresh token is the credential)
# - POST /api/v1/auth/request-reset:    public, rate limited
# - POST /api/v1/auth/reset-password:   public
# - POST /api/v1/auth/logout:           requires access token (get_current_claims)
# - POST /api/v1/auth/change-password:  requires access token (get_current_claims)
# - GET  /api/v1/auth/me:               requires access token (get_current_claims)
# - GET  /api/v1/auth/stats:            requires ADMIN (admin_only)
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _sessions(request: Request) -> AuthSessionController:
    return request.app.state.sessions


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_login_rate_limit)  # [H2] below @router so the registered endpoint is the limited wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return the user and a token pair.

    Unknown email, deactivated account and wrong password all answer 401
    INVALID_CREDENTIALS. A locked account answers 403 ACCOUNT_LOCKED.
    """
    result = _sessions(request).login(body.email, body.password)
    payload = LoginResponse(
        user=UserSummary(id=result.user_id, username=result.username, email=result.email, role=result.role),
        tokens=TokenPairResponse.from_pair(result.tokens),
    )
    return _no_store(payload.model_dump(by_alias=True))


@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request) -> JSONResponse:
    """Exchange "Authorization: Bearer <refresh token>" for a new token pair."""
    pair = _sessions(request).refresh(request.headers.get("Authorization"))
    return _no_store(TokenPairResponse.from_pair(pair).model_dump(by_alias=True))


@router.post("/auth/request-reset", response_model=MessageResponse)
@limiter.limit(_login_rate_limit)  # [H2]
def request_password_reset(request: Request, body: PasswordResetRequest) -> MessageResponse:
    """Accept a password reset request without revealing whether the email exists."""
    return MessageResponse(message=_sessions(request).request_password_reset(body.email))


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    _sessions(request).reset_password(body.token, body.new_password)
    return MessageResponse(message="Password has been reset.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, claims: TokenClaims = Depends(get_current_claims)) -> MessageResponse:
    """End the session. Idempotent: logging out twice is not an error."""
    _sessions(request).logout(claims)
    return MessageResponse(message="Logged out successfully.")


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    claims: TokenClaims = Depends(get_current_claims),
) -> MessageResponse:
    """Change the caller's password. The caller must log in again afterwards."""
    _sessions(request).change_password(claims, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully. Please log in again.")


@router.get("/auth/me", response_model=MeResponse)
async def me(claims: TokenClaims = Depends(get_current_claims)) -> MeResponse:
    """Return identity information carried by the access token."""
    return MeResponse.from_claims(claims)


@router.get("/auth/stats", response_model=AuthStatsResponse)
def auth_stats(request: Request, claims: TokenClaims = Depends(admin_only)) -> AuthStatsResponse:
    """Credential statistics for monitoring. Admin only."""
    credential_store: CredentialStore = request.app.state.credential_store
    return AuthStatsResponse(**credential_store.stats())
