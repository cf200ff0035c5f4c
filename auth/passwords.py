"""
auth/passwords.py -- bcrypt password hashing and the password strength policy.

Security design decisions:
  bcrypt directly (no passlib wrapper). passlib's wrap-bug detection builds a
      password longer than 72 bytes, which bcrypt 4.x+ rejects outright.

  Work factor is configurable (BCRYPT_ROUNDS, default 10) and fixed per
      PasswordHasher instance. One instance is built at startup and shared.

  Malformed input is an error, not a mismatch. verify() raises HashingError
      for an empty password or a stored hash bcrypt cannot parse, so a corrupt
      credential row surfaces as a 500 instead of looking like a wrong password.

  Timing equalization [C1]. dummy_verify() runs a full bcrypt check against a
      hash computed once at construction, so a login for an unknown email
      costs the same as a login with a wrong password.
"""

from __future__ import annotations

import logging
import re

import bcrypt

from auth.errors import HashingError, ValidationError

logger = logging.getLogger("sigl.auth.passwords")

MIN_PASSWORD_LENGTH = 8
# bcrypt only looks at the first 72 bytes and bcrypt>=4.1 refuses longer input.
MAX_PASSWORD_BYTES = 72
BCRYPT_HASH_LENGTH = 60

_SPECIAL_RE = re.compile(r"[^A-Za-z0-9]")


class PasswordHasher:
    """Salted one-way password hashing with a fixed bcrypt cost."""

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("sigl_timing_dummy_password")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the plaintext password.

        Raises HashingError for non-string, empty, too short (< 8 chars) or
        too long (> 72 bytes) input.
        """
        if not isinstance(plain, str) or not plain:
            raise HashingError(log_detail="Password must be a non-empty string")
        if len(plain) < MIN_PASSWORD_LENGTH:
            raise HashingError(log_detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        encoded = plain.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise HashingError(log_detail=f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches the bcrypt hash.

        The comparison is bcrypt's own checkpw. Raises HashingError when either
        argument is malformed.
        """
        if not isinstance(plain, str) or not plain:
            raise HashingError(log_detail="Plain password must be a non-empty string")
        if not isinstance(hashed, str) or not hashed:
            raise HashingError(log_detail="Hashed password must be a non-empty string")
        encoded = plain.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            # Could never have been hashed by hash() above.
            return False
        try:
            return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
        except ValueError as exc:
            raise HashingError(log_detail=f"Stored hash could not be parsed: {exc}") from exc

    def dummy_verify(self, plain: str) -> None:
        """Burn one bcrypt verification for timing equalization [C1]."""
        if isinstance(plain, str) and plain:
            self.verify(plain, self._dummy_hash)


def is_well_formed_hash(hashed: str | None) -> bool:
    """Cheap structural check used before a hash is persisted."""
    return isinstance(hashed, str) and len(hashed) >= BCRYPT_HASH_LENGTH and hashed.startswith("$2")


def check_password_strength(password: str) -> None:
    """Raise ValidationError unless the password meets the strength policy.

    Policy: at least 8 characters with an upper-case letter, a lower-case
    letter, a digit and a special character.
    """
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.",
            code="WEAK_PASSWORD",
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.",
            code="PASSWORD_TOO_LONG",
        )
    if not (
        any(c.isupper() for c in password)
        and any(c.islower() for c in password)
        and any(c.isdigit() for c in password)
        and _SPECIAL_RE.search(password)
    ):
        raise ValidationError(
            "Password must contain upper-case and lower-case letters, a digit and a special character.",
            code="WEAK_PASSWORD_COMPLEXITY",
        )
