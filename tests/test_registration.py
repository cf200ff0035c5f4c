"""
tests/test_registration.py -- Tests for the two-phase RegistrationCoordinator.

The important property is all-or-nothing: after any failed registration
there is neither a profile nor a credential left behind, unless the
rollback itself fails, which must be reported loudly.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from auth.errors import (
    ConflictError,
    HashingError,
    NotFoundError,
    RegistrationRollbackError,
    ServerError,
    ValidationError,
)
from auth.passwords import PasswordHasher
from auth.registration import RegistrationCoordinator
from auth.store import CredentialStore
from profiles.store import UserStore


class TestRegister:
    def test_success_creates_both_rows(
        self, registration: RegistrationCoordinator, user_store: UserStore, credential_store: CredentialStore
    ) -> None:
        user = registration.register(
            "  jdoe ", "JDoe@Example.org", "Secret123!", role="MENTOR", first_name="Jane", last_name="Doe"
        )
        assert user.id is not None
        assert user.username == "jdoe"
        assert user.email == "jdoe@example.org"
        assert user.role == "MENTOR"
        assert user.first_name == "Jane"

        cred = credential_store.find_by_email("jdoe@example.org")
        assert cred is not None
        assert cred.user_id == user.id
        assert cred.password_hash != "Secret123!"

    def test_default_role_is_apprentice(self, registration: RegistrationCoordinator) -> None:
        assert registration.register("appr", "appr@example.org", "Secret123!").role == "APPRENTICE"

    def test_duplicate_email(self, registration: RegistrationCoordinator) -> None:
        registration.register("first", "dup@example.org", "Secret123!")
        with pytest.raises(ConflictError) as exc_info:
            registration.register("second", "DUP@example.org", "Secret123!")
        assert exc_info.value.code == "EMAIL_ALREADY_EXISTS"
        assert exc_info.value.status_code == 409

    def test_duplicate_username(self, registration: RegistrationCoordinator) -> None:
        registration.register("same", "one@example.org", "Secret123!")
        with pytest.raises(ConflictError) as exc_info:
            registration.register("same", "two@example.org", "Secret123!")
        assert exc_info.value.code == "USERNAME_ALREADY_EXISTS"

    @pytest.mark.parametrize(
        "username, email, password, role, code",
        [
            ("", "a@example.org", "Secret123!", "APPRENTICE", "MISSING_FIELDS"),
            ("abc", "", "Secret123!", "APPRENTICE", "MISSING_FIELDS"),
            ("abc", "a@example.org", "", "APPRENTICE", "MISSING_FIELDS"),
            ("a b", "a@example.org", "Secret123!", "APPRENTICE", "INVALID_USERNAME"),
            ("abc", "not-an-email", "Secret123!", "APPRENTICE", "INVALID_EMAIL_FORMAT"),
            ("abc", "a@example.org", "Secret123!", "SUPERUSER", "INVALID_ROLE"),
            ("abc", "a@example.org", "weak", "APPRENTICE", "WEAK_PASSWORD"),
            ("abc", "a@example.org", "weakpassword", "APPRENTICE", "WEAK_PASSWORD_COMPLEXITY"),
        ],
    )
    def test_rejected_input_leaves_nothing(
        self,
        registration: RegistrationCoordinator,
        user_store: UserStore,
        username: str,
        email: str,
        password: str,
        role: str,
        code: str,
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            registration.register(username, email, password, role=role)
        assert exc_info.value.code == code
        assert user_store.count_users() == 0


class TestCompensation:
    def test_unexpected_credential_failure_rolls_back_profile(
        self, user_store: UserStore, hasher: PasswordHasher
    ) -> None:
        failing = MagicMock(spec=CredentialStore)
        failing.create.side_effect = RuntimeError("disk full")
        coordinator = RegistrationCoordinator(user_store, failing, hasher)

        with pytest.raises(ServerError) as exc_info:
            coordinator.register("ghost", "ghost@example.org", "Secret123!")

        assert exc_info.value.code == "REGISTRATION_FAILED"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert user_store.get_by_email("ghost@example.org") is None
        assert user_store.count_users() == 0

    def test_auth_error_from_phase_two_is_reraised(self, user_store: UserStore, hasher: PasswordHasher) -> None:
        failing = MagicMock(spec=CredentialStore)
        failing.create.side_effect = HashingError(log_detail="bad hash")
        coordinator = RegistrationCoordinator(user_store, failing, hasher)

        with pytest.raises(HashingError):
            coordinator.register("ghost", "ghost@example.org", "Secret123!")
        assert user_store.count_users() == 0

    def test_failed_rollback_is_reported(self, engine, hasher: PasswordHasher) -> None:
        class UndeletableUserStore(UserStore):
            def delete_user(self, user_id: int) -> bool:
                raise RuntimeError("connection lost")

        users = UndeletableUserStore(engine)
        failing = MagicMock(spec=CredentialStore)
        failing.create.side_effect = RuntimeError("disk full")
        coordinator = RegistrationCoordinator(users, failing, hasher)

        with pytest.raises(RegistrationRollbackError) as exc_info:
            coordinator.register("orphan", "orphan@example.org", "Secret123!")

        assert exc_info.value.status_code == 500
        # The orphaned profile is exactly what the error reports.
        assert users.get_by_email("orphan@example.org") is not None


class TestUpdateProfile:
    def test_changes_only_given_fields(self, registration: RegistrationCoordinator) -> None:
        user = registration.register("jdoe", "jdoe@example.org", "Secret123!", first_name="Jane", last_name="Doe")
        updated = registration.update_profile(user.id, last_name="Smith", email=" JSmith@Example.org ")
        assert updated.last_name == "Smith"
        assert updated.first_name == "Jane"
        assert updated.email == "jsmith@example.org"
        assert updated.username == "jdoe"

    def test_nothing_to_change(self, registration: RegistrationCoordinator) -> None:
        user = registration.register("jdoe", "jdoe@example.org", "Secret123!")
        assert registration.update_profile(user.id) == user

    def test_keeping_own_username_is_not_a_conflict(self, registration: RegistrationCoordinator) -> None:
        user = registration.register("jdoe", "jdoe@example.org", "Secret123!")
        assert registration.update_profile(user.id, username="jdoe", email="jdoe@example.org").username == "jdoe"

    def test_username_taken_by_someone_else(self, registration: RegistrationCoordinator) -> None:
        registration.register("first", "first@example.org", "Secret123!")
        user = registration.register("second", "second@example.org", "Secret123!")
        with pytest.raises(ConflictError) as exc_info:
            registration.update_profile(user.id, username="first")
        assert exc_info.value.code == "USERNAME_ALREADY_EXISTS"

    @pytest.mark.parametrize(
        "field, value, code",
        [("username", "x", "INVALID_USERNAME"), ("email", "nope", "INVALID_EMAIL_FORMAT"), ("role", "WIZARD", "INVALID_ROLE")],
    )
    def test_invalid_values(self, registration: RegistrationCoordinator, field: str, value: str, code: str) -> None:
        user = registration.register("jdoe", "jdoe@example.org", "Secret123!")
        with pytest.raises(ValidationError) as exc_info:
            registration.update_profile(user.id, **{field: value})
        assert exc_info.value.code == code

    def test_unknown_user(self, registration: RegistrationCoordinator) -> None:
        with pytest.raises(NotFoundError):
            registration.update_profile(424242, first_name="Ghost")
