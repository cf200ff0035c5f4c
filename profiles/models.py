"""
profiles/models.py -- User profile dataclass.

The profile is owned by the user-management side of the application. It
never holds a password; credentials live in auth.models.Credential.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    username: str
    email: str  # stored lower-case
    role: str
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    created_at: str | None = None
