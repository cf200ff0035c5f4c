"""
api/routes/v1/users.py -- User profile endpoints guarded by the role checks.

Routes:
  POST   /api/v1/users/register    -- public self-registration (APPRENTICE only)
  POST   /api/v1/users             -- create a user with any role (admin only)
  GET    /api/v1/users             -- list profiles (staff)
  GET    /api/v1/users/{user_id}   -- one profile (the user themself, or admin)
  PUT    /api/v1/users/{user_id}   -- update profile fields (the user themself, or admin)
  DELETE /api/v1/users/{user_id}   -- deactivate the user's credential (admin only)

Deletion is a soft delete: the profile row stays, the credential is marked
inactive and its refresh token dropped. Access tokens already issued stay
valid until they expire because verification is stateless.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import MessageResponse, UserCreate, UserEnvelope, UserResponse, UserUpdate
from auth.dependencies import admin_only, require_self_or_admin, staff_only
from auth.errors import AuthorizationError, NotFoundError
from auth.models import Role, TokenClaims
from auth.registration import RegistrationCoordinator
from auth.store import CredentialStore
from core.config import get_settings
from profiles.store import UserStore

# Auth policy:
# - POST   /api/v1/users/register:   public when SELF_REGISTRATION_ENABLED, APPRENTICE only
# - POST   /api/v1/users:            requires ADMIN (admin_only)
# - GET    /api/v1/users:            requires EDUCATIONAL_TUTOR or higher (staff_only)
# - GET    /api/v1/users/{user_id}:  requires self or ADMIN (require_self_or_admin)
# - PUT    /api/v1/users/{user_id}:  requires self or ADMIN; only ADMIN may change a role
# - DELETE /api/v1/users/{user_id}:  requires ADMIN (admin_only)
router = APIRouter()


def _register(request: Request, body: UserCreate, role: str) -> UserEnvelope:
    registration: RegistrationCoordinator = request.app.state.registration
    user = registration.register(
        username=body.username,
        email=body.email,
        password=body.password,
        role=role,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return UserEnvelope(user=UserResponse.from_user(user))


@router.post("/users/register", response_model=UserEnvelope, status_code=201)
def register(request: Request, body: UserCreate) -> UserEnvelope:
    """Create an APPRENTICE account. Other roles are created by an admin."""
    if not get_settings().self_registration_enabled:
        raise AuthorizationError("Self-registration is disabled.", code="REGISTRATION_DISABLED")
    if body.role is not None and body.role != Role.APPRENTICE.value:
        raise AuthorizationError("Only apprentice accounts can self-register.", code="ROLE_NOT_ALLOWED")
    return _register(request, body, Role.APPRENTICE.value)


@router.post("/users", response_model=UserEnvelope, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    claims: TokenClaims = Depends(admin_only),
) -> UserEnvelope:
    """Create an account with any role. Admin only."""
    return _register(request, body, body.role or Role.APPRENTICE.value)


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, claims: TokenClaims = Depends(staff_only)) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users()]


@router.get("/users/{user_id}", response_model=UserEnvelope)
def get_user(
    request: Request,
    user_id: int,
    claims: TokenClaims = Depends(require_self_or_admin("user_id")),
) -> UserEnvelope:
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found.", code="USER_NOT_FOUND")
    return UserEnvelope(user=UserResponse.from_user(user))


@router.put("/users/{user_id}", response_model=UserEnvelope)
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdate,
    claims: TokenClaims = Depends(require_self_or_admin("user_id")),
) -> UserEnvelope:
    """Update profile fields. Passwords change through /auth/change-password.

    A role change takes effect in access tokens from the next refresh.
    """
    user_store: UserStore = request.app.state.user_store
    current = user_store.get_by_id(user_id)
    if current is None:
        raise NotFoundError("User not found.", code="USER_NOT_FOUND")
    if body.role is not None and body.role != current.role and claims.role != Role.ADMIN.value:
        raise AuthorizationError("Only an administrator can change a role.", code="ROLE_CHANGE_FORBIDDEN")

    registration: RegistrationCoordinator = request.app.state.registration
    user = registration.update_profile(
        user_id,
        username=body.username,
        email=body.email,
        role=body.role,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return UserEnvelope(user=UserResponse.from_user(user))


@router.delete("/users/{user_id}", response_model=MessageResponse)
def deactivate_user(
    request: Request,
    user_id: int,
    claims: TokenClaims = Depends(admin_only),
) -> MessageResponse:
    """Deactivate the user's credential. The profile is kept."""
    credential_store: CredentialStore = request.app.state.credential_store
    if not credential_store.deactivate(user_id):
        raise NotFoundError("No active account for this user.", code="USER_NOT_FOUND")
    return MessageResponse(message="User deactivated.")
