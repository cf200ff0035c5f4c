"""
profiles/store.py -- SQLAlchemy Core persistence for user profiles.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and service code never touches SQL directly.

Emails are lower-cased on the way in and on every lookup, which makes the
UNIQUE constraint on users.email case-insensitive in practice.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from core.database import to_iso, users, utcnow
from profiles.models import User


class UserStore:
    """Repository for User profiles.

    Usage:
        store = UserStore(open_engine(db_url))
        uid = store.create_user(User(username="admin", email="admin@example.org", role="ADMIN"))
        user = store.get_by_email("Admin@Example.org")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> int:
        """Insert a new profile and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. The registration coordinator maps that to a 409.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                users.insert().values(
                    username=user.username,
                    email=user.email.strip().lower(),
                    role=user.role,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    created_at=to_iso(utcnow()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup by email."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all profiles ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(users.select().order_by(users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(users)).scalar()
        return result or 0

    def update_user(self, user_id: int, **changes: str | None) -> bool:
        """Overwrite the given profile columns. Returns True if the user exists.

        Raises sqlalchemy.exc.IntegrityError when the new username or email
        belongs to someone else.
        """
        if "email" in changes and changes["email"] is not None:
            changes["email"] = changes["email"].strip().lower()
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**changes))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a profile. Returns True if a row was removed.

        Only used to compensate a failed registration -- regular account
        removal deactivates the credential instead.
        """
        with self.engine.connect() as conn:
            result = conn.execute(users.delete().where(users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        role=row.role,
        first_name=row.first_name,
        last_name=row.last_name,
        created_at=row.created_at,
    )
