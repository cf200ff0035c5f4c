"""
auth/store.py -- SQLAlchemy Core persistence for credential records.

Pattern: Repository + Data Mapper (same as profiles/store.py).
CredentialStore is the repository; _row_to_credential is the mapper.

Every read that feeds an authentication decision filters on is_active = 1.
A deactivated credential looks exactly like a missing one to login, refresh
and logout.

Concurrency:
  Two requests for the same account may run at the same time, so nothing
  here does read-modify-write without a guard.

  - update_refresh_token / update_password / deactivate are single UPDATE
    statements.
  - rotate_refresh_token is a compare-and-set: the UPDATE only matches while
    the stored fingerprint is still the one presented. Two concurrent
    refreshes with the same token cannot both win.
  - apply_lockout_transition reads the lockout state, runs LockoutPolicy and
    writes back with an UPDATE whose WHERE clause pins the counter and lock
    to the values read. A lost race (rowcount 0) re-reads and retries, so no
    failed attempt is ever dropped and the threshold is a hard limit. A
    transition that finds the lock already in force writes nothing.

Security:
  All queries use bound parameters. No f-strings in SQL. refresh_token holds
  an HMAC fingerprint, never the raw token.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import and_, case, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError, HashingError, NotFoundError, ServerError
from auth.lockout import LockoutPolicy, LockoutState
from auth.models import Credential
from auth.passwords import is_well_formed_hash
from core.database import credentials, from_iso, to_iso, users, utcnow

logger = logging.getLogger("sigl.auth.store")

# Each losing round means another writer committed, so this bounds the number
# of concurrent writers we tolerate on a single account before giving up.
_MAX_CAS_ATTEMPTS = 25

_JOINED = credentials.join(users, credentials.c.user_id == users.c.id)
_JOINED_COLUMNS = (credentials, users.c.email, users.c.username, users.c.role)


class CredentialStore:
    """Repository for Credential entities.

    Usage:
        store = CredentialStore(engine)
        store.create(Credential(user_id=uid, password_hash=hasher.hash("Secret123!")))
        cred = store.find_by_email("a@b.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, credential: Credential) -> int:
        """Insert a credential for an existing user and return its ID.

        Raises HashingError if the hash is not a well-formed bcrypt hash,
        NotFoundError if the user does not exist and ConflictError if the
        user already has a credential.
        """
        if not is_well_formed_hash(credential.password_hash):
            raise HashingError(log_detail="Refusing to persist a malformed password hash")
        now = to_iso(utcnow())
        with self.engine.connect() as conn:
            if conn.execute(select(users.c.id).where(users.c.id == credential.user_id)).fetchone() is None:
                raise NotFoundError("User not found.", code="USER_NOT_FOUND")
            existing = conn.execute(
                select(credentials.c.id).where(credentials.c.user_id == credential.user_id)
            ).fetchone()
            if existing is not None:
                raise ConflictError("Credentials already exist for this user.", code="CREDENTIAL_EXISTS")
            try:
                result = conn.execute(
                    credentials.insert().values(
                        user_id=credential.user_id,
                        password_hash=credential.password_hash,
                        refresh_token=None,
                        is_active=1 if credential.is_active else 0,
                        failed_login_attempts=0,
                        account_locked_until=None,
                        last_login=None,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
            except IntegrityError as exc:
                # Lost the race against a concurrent create for the same user.
                raise ConflictError("Credentials already exist for this user.", code="CREDENTIAL_EXISTS") from exc
            return result.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_user_id(self, user_id: int) -> Credential | None:
        """Credential for a user regardless of is_active. Admin use only."""
        return self._find_one(credentials.c.user_id == user_id)

    def find_active_by_user_id(self, user_id: int) -> Credential | None:
        return self._find_one(and_(credentials.c.user_id == user_id, credentials.c.is_active == 1))

    def _find_one(self, condition) -> Credential | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(*_JOINED_COLUMNS).select_from(_JOINED).where(condition)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def find_by_email(self, email: str) -> Credential | None:
        """Active credential whose user has this email (case-insensitive)."""
        if not isinstance(email, str) or not email.strip():
            return None
        return self._find_one(and_(users.c.email == email.strip().lower(), credentials.c.is_active == 1))

    def find_by_refresh_token(self, fingerprint: str) -> Credential | None:
        """Active credential whose stored refresh fingerprint matches exactly."""
        if not fingerprint:
            return None
        return self._find_one(and_(credentials.c.refresh_token == fingerprint, credentials.c.is_active == 1))

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update_password(self, user_id: int, new_hash: str) -> bool:
        """Replace the password hash.

        Also clears the refresh token (forces re-login everywhere), the lock
        and the failed-attempt counter. Returns False if no active credential.
        """
        if not is_well_formed_hash(new_hash):
            raise HashingError(log_detail="Refusing to persist a malformed password hash")
        with self.engine.connect() as conn:
            result = conn.execute(
                credentials.update()
                .where(and_(credentials.c.user_id == user_id, credentials.c.is_active == 1))
                .values(
                    password_hash=new_hash,
                    refresh_token=None,
                    account_locked_until=None,
                    failed_login_attempts=0,
                    updated_at=to_iso(utcnow()),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def update_refresh_token(self, user_id: int, fingerprint: str | None) -> bool:
        """Set (or clear, with None) the single stored refresh fingerprint."""
        with self.engine.connect() as conn:
            result = conn.execute(
                credentials.update()
                .where(and_(credentials.c.user_id == user_id, credentials.c.is_active == 1))
                .values(refresh_token=fingerprint, updated_at=to_iso(utcnow()))
            )
            conn.commit()
        return result.rowcount > 0

    def rotate_refresh_token(self, user_id: int, expected: str, replacement: str) -> bool:
        """Swap the stored fingerprint only if it still equals `expected`.

        Returns False when another request rotated, logged out or changed the
        password in between -- the caller must treat that as revoked.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                credentials.update()
                .where(
                    and_(
                        credentials.c.user_id == user_id,
                        credentials.c.is_active == 1,
                        credentials.c.refresh_token == expected,
                    )
                )
                .values(refresh_token=replacement, updated_at=to_iso(utcnow()))
            )
            conn.commit()
        return result.rowcount == 1

    def apply_lockout_transition(
        self,
        user_id: int,
        policy: LockoutPolicy,
        *,
        success: bool,
        now: datetime | None = None,
    ) -> LockoutState | None:
        """Apply one login outcome to the stored lockout state atomically.

        Returns the new state, or None when there is no active credential.
        When the stored lock is in force nothing is written and the locked
        state is returned, so a success cannot lift a lock and a failure
        cannot bump the counter of a locked account.
        """
        now = now or utcnow()
        for _ in range(_MAX_CAS_ATTEMPTS):
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(
                        credentials.c.failed_login_attempts,
                        credentials.c.account_locked_until,
                        credentials.c.last_login,
                    ).where(and_(credentials.c.user_id == user_id, credentials.c.is_active == 1))
                ).fetchone()
                if row is None:
                    return None

                current = LockoutState(
                    failed_login_attempts=row.failed_login_attempts,
                    account_locked_until=from_iso(row.account_locked_until),
                    last_login=from_iso(row.last_login),
                )
                if policy.is_locked(current, now):
                    # Another request set the lock after our caller checked it.
                    return current
                new = policy.on_success(current, now) if success else policy.on_failure(current, now)

                values = {
                    "failed_login_attempts": new.failed_login_attempts,
                    "account_locked_until": to_iso(new.account_locked_until),
                    "updated_at": to_iso(now),
                }
                if success:
                    values["last_login"] = to_iso(new.last_login)

                result = conn.execute(
                    credentials.update()
                    .where(
                        and_(
                            credentials.c.user_id == user_id,
                            credentials.c.is_active == 1,
                            credentials.c.failed_login_attempts == row.failed_login_attempts,
                            credentials.c.account_locked_until.is_not_distinct_from(row.account_locked_until),
                        )
                    )
                    .values(**values)
                )
                conn.commit()
            if result.rowcount == 1:
                return new
            logger.debug("Lockout update for user %s lost a race, retrying", user_id)
        raise ServerError(log_detail=f"Lockout update for user {user_id} did not settle after {_MAX_CAS_ATTEMPTS} tries")

    def deactivate(self, user_id: int) -> bool:
        """Soft delete: flip is_active and drop the refresh token."""
        with self.engine.connect() as conn:
            result = conn.execute(
                credentials.update()
                .where(and_(credentials.c.user_id == user_id, credentials.c.is_active == 1))
                .values(is_active=0, refresh_token=None, updated_at=to_iso(utcnow()))
            )
            conn.commit()
        return result.rowcount > 0

    def delete(self, user_id: int) -> bool:
        """Hard delete. Only for registration compensation."""
        with self.engine.connect() as conn:
            result = conn.execute(credentials.delete().where(credentials.c.user_id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        """Aggregate counters for the admin statistics endpoint."""
        now = to_iso(utcnow())
        query = select(
            func.coalesce(func.sum(case((credentials.c.is_active == 1, 1), else_=0)), 0).label("active"),
            func.coalesce(func.sum(case((credentials.c.is_active == 0, 1), else_=0)), 0).label("inactive"),
            func.coalesce(func.sum(case((credentials.c.failed_login_attempts > 0, 1), else_=0)), 0).label("failed"),
            func.coalesce(func.sum(case((credentials.c.account_locked_until > now, 1), else_=0)), 0).label("locked"),
            func.coalesce(func.sum(case((credentials.c.refresh_token.is_not(None), 1), else_=0)), 0).label(
                "sessions"
            ),
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return {
            "total_active_accounts": int(row.active),
            "total_inactive_accounts": int(row.inactive),
            "accounts_with_failed_attempts": int(row.failed),
            "locked_accounts": int(row.locked),
            "accounts_with_refresh_tokens": int(row.sessions),
        }


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        user_id=row.user_id,
        password_hash=row.password_hash,
        refresh_token=row.refresh_token,
        is_active=bool(row.is_active),
        failed_login_attempts=row.failed_login_attempts,
        account_locked_until=from_iso(row.account_locked_until),
        last_login=from_iso(row.last_login),
        created_at=row.created_at,
        updated_at=row.updated_at,
        email=getattr(row, "email", None),
        username=getattr(row, "username", None),
        role=getattr(row, "role", None),
    )
