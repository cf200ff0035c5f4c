"""
auth/registration.py -- Two-phase account creation with compensation.

A new account is two rows in two repositories: a users row (profiles) and an
auth_credentials row (auth). They are written separately, so a failure
between the two would leave a profile nobody can log in with. The
coordinator undoes phase 1 when phase 2 fails:

  pre-checks  duplicate email / username       -> ConflictError (409)
              password strength, role, email    -> ValidationError (400)
  phase 1     UserStore.create_user             -> IntegrityError -> ConflictError
  phase 2     hash password, CredentialStore.create
  on failure  UserStore.delete_user(new id)
              rollback ok     -> re-raise the original error
                                 (AuthErrors as-is, anything else REGISTRATION_FAILED)
              rollback failed -> RegistrationRollbackError, both errors logged

update_profile applies the same username, email and role rules to an
existing profile.

Pre-checks are an early, friendly answer. The UNIQUE constraints are what
actually guarantee no duplicates under concurrency.

Layer rule: this is the one auth/ module that imports from profiles/. No
imports from api/.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    RegistrationRollbackError,
    ServerError,
    ValidationError,
)
from auth.models import EMAIL_RE, Credential, Role
from auth.passwords import PasswordHasher, check_password_strength
from auth.store import CredentialStore
from profiles.models import User
from profiles.store import UserStore

logger = logging.getLogger("sigl.auth.registration")

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,50}$")


class RegistrationCoordinator:
    def __init__(self, users: UserStore, credentials: CredentialStore, hasher: PasswordHasher) -> None:
        self.users = users
        self.credentials = credentials
        self.hasher = hasher

    def register(
        self,
        username: str,
        email: str,
        password: str,
        role: str | Role = Role.APPRENTICE,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User:
        """Create a user and its credential, or neither.

        Returns the stored User (with id). Raises ValidationError,
        ConflictError, ServerError or RegistrationRollbackError.
        """
        username = (username or "").strip()
        email = (email or "").strip().lower()
        if not username or not email or not password:
            raise ValidationError("Username, email and password are required.", code="MISSING_FIELDS")
        if not _USERNAME_RE.match(username):
            raise ValidationError(
                "Username must be 3-50 characters of letters, digits, '.', '_' or '-'.",
                code="INVALID_USERNAME",
            )
        if not EMAIL_RE.match(email):
            raise ValidationError("Invalid email format.", code="INVALID_EMAIL_FORMAT")
        parsed_role = Role.parse(role)
        if parsed_role is None:
            raise ValidationError("Unknown role.", code="INVALID_ROLE")
        check_password_strength(password)

        if self.users.get_by_email(email) is not None:
            raise ConflictError("An account with this email already exists.", code="EMAIL_ALREADY_EXISTS")
        if self.users.get_by_username(username) is not None:
            raise ConflictError("This username is already taken.", code="USERNAME_ALREADY_EXISTS")

        # Phase 1
        try:
            user_id = self.users.create_user(
                User(
                    username=username,
                    email=email,
                    role=parsed_role.value,
                    first_name=first_name,
                    last_name=last_name,
                )
            )
        except IntegrityError as exc:
            raise ConflictError("An account with this email or username already exists.", code="USER_EXISTS") from exc

        # Phase 2
        try:
            password_hash = self.hasher.hash(password)
            self.credentials.create(Credential(user_id=user_id, password_hash=password_hash))
        except Exception as exc:
            self._compensate(user_id, exc)
            if isinstance(exc, AuthError):
                raise
            raise ServerError(
                "Registration failed.",
                code="REGISTRATION_FAILED",
                log_detail=f"Credential creation failed for user {user_id}: {exc!r}",
            ) from exc

        logger.info("Registered user %s (%s) with role %s", user_id, username, parsed_role.value)
        return self.users.get_by_id(user_id)

    def update_profile(
        self,
        user_id: int,
        *,
        username: str | None = None,
        email: str | None = None,
        role: str | Role | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User:
        """Change profile fields of an existing user. None leaves a field as it is.

        The same username, email and role rules as registration apply.
        Whether the caller may change the role at all is decided by the route.
        Raises NotFoundError, ValidationError or ConflictError.
        """
        if self.users.get_by_id(user_id) is None:
            raise NotFoundError("User not found.", code="USER_NOT_FOUND")

        changes: dict[str, str | None] = {}
        if username is not None:
            username = username.strip()
            if not _USERNAME_RE.match(username):
                raise ValidationError(
                    "Username must be 3-50 characters of letters, digits, '.', '_' or '-'.",
                    code="INVALID_USERNAME",
                )
            other = self.users.get_by_username(username)
            if other is not None and other.id != user_id:
                raise ConflictError("This username is already taken.", code="USERNAME_ALREADY_EXISTS")
            changes["username"] = username
        if email is not None:
            email = email.strip().lower()
            if not EMAIL_RE.match(email):
                raise ValidationError("Invalid email format.", code="INVALID_EMAIL_FORMAT")
            other = self.users.get_by_email(email)
            if other is not None and other.id != user_id:
                raise ConflictError("An account with this email already exists.", code="EMAIL_ALREADY_EXISTS")
            changes["email"] = email
        if role is not None:
            parsed_role = Role.parse(role)
            if parsed_role is None:
                raise ValidationError("Unknown role.", code="INVALID_ROLE")
            changes["role"] = parsed_role.value
        if first_name is not None:
            changes["first_name"] = first_name
        if last_name is not None:
            changes["last_name"] = last_name

        if changes:
            try:
                self.users.update_user(user_id, **changes)
            except IntegrityError as exc:
                raise ConflictError(
                    "An account with this email or username already exists.", code="USER_EXISTS"
                ) from exc
            logger.info("Updated profile of user %s (%s)", user_id, ", ".join(sorted(changes)))
        return self.users.get_by_id(user_id)

    def _compensate(self, user_id: int, original: Exception) -> None:
        """Delete the phase-1 user row. Raises RegistrationRollbackError if that fails too."""
        logger.warning("Credential creation failed for user %s, rolling back profile: %r", user_id, original)
        try:
            removed = self.users.delete_user(user_id)
        except Exception as rollback_exc:
            logger.error(
                "Rollback failed for user %s: %r (original error: %r)",
                user_id,
                rollback_exc,
                original,
            )
            raise RegistrationRollbackError(
                "Registration failed and could not be rolled back.",
                log_detail=f"Orphaned user {user_id}: {rollback_exc!r}",
            ) from original
        if not removed:
            logger.error("Rollback for user %s removed no row (original error: %r)", user_id, original)
