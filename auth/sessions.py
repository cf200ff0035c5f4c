"""
auth/sessions.py -- Login, logout, refresh and password flows.

AuthSessionController is the only place that combines PasswordHasher,
TokenService, LockoutPolicy and CredentialStore. Routes parse HTTP and call
one method; every failure is an AuthError the API layer renders.

Security design decisions:
  [C1] Timing equalization. An unknown or deactivated email still costs one
       bcrypt verification (PasswordHasher.dummy_verify), and both cases
       answer INVALID_CREDENTIALS, so neither the status nor the latency
       tells an attacker whether the account exists.

  Lockout order. The lock is checked before the password. While locked every
  attempt is refused with ACCOUNT_LOCKED, correct password or not. The
  attempt that reaches the threshold sets the lock but still answers
  INVALID_CREDENTIALS; only later attempts see ACCOUNT_LOCKED. The success
  transition re-checks the stored lock, so a correct password whose check
  overlapped the locking failure is still refused.

  One session per user. The credential stores the fingerprint of a single
  refresh token. Login replaces it, logout and password change clear it, and
  rotation swaps it with a compare-and-set so a refresh token can only be
  redeemed once.

  Refresh tokens carry no role. The new access token is built from the
  stored profile, so a role change takes effect on the next refresh.

Layer rule: no imports from api/ or profiles/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.errors import (
    AccountLockedError,
    AuthenticationError,
    InvalidCredentialsError,
    NotFoundError,
    TokenError,
    TokenInvalidError,
    ValidationError,
)
from auth.lockout import LockoutPolicy, LockoutState
from auth.models import EMAIL_RE, TokenClaims, TokenKind, TokenPair
from auth.passwords import PasswordHasher, check_password_strength
from auth.store import CredentialStore
from auth.tokens import TOKEN_TYPE, TokenService, extract_bearer
from core.database import to_iso, utcnow

logger = logging.getLogger("sigl.auth.sessions")

RESET_REQUEST_MESSAGE = "If an account exists for this email, password reset instructions have been sent."


@dataclass(frozen=True)
class LoginResult:
    user_id: int
    username: str
    email: str
    role: str
    tokens: TokenPair


class AuthSessionController:
    def __init__(
        self,
        credentials: CredentialStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        lockout: LockoutPolicy,
        *,
        rotate_refresh_tokens: bool = True,
    ) -> None:
        self.credentials = credentials
        self.hasher = hasher
        self.tokens = tokens
        self.lockout = lockout
        self.rotate_refresh_tokens = rotate_refresh_tokens

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, email: str | None, password: str | None) -> LoginResult:
        if not email or not password:
            raise ValidationError("Email and password are required.", code="MISSING_CREDENTIALS")
        email = email.strip().lower()
        if not EMAIL_RE.match(email):
            raise ValidationError("Invalid email format.", code="INVALID_EMAIL_FORMAT")

        credential = self.credentials.find_by_email(email)
        if credential is None:
            self.hasher.dummy_verify(password)  # [C1]
            logger.info("Login failed: no active account for %s", email)
            raise InvalidCredentialsError()

        now = utcnow()
        state = LockoutState(
            failed_login_attempts=credential.failed_login_attempts,
            account_locked_until=credential.account_locked_until,
            last_login=credential.last_login,
        )
        if self.lockout.is_locked(state, now):
            logger.warning(
                "Login refused for locked user %s (locked until %s)",
                credential.user_id,
                to_iso(credential.account_locked_until),
            )
            raise AccountLockedError()

        if not self.hasher.verify(password, credential.password_hash):
            new_state = self.credentials.apply_lockout_transition(
                credential.user_id, self.lockout, success=False, now=now
            )
            if new_state is not None and self.lockout.is_locked(new_state, now):
                logger.warning(
                    "User %s locked until %s after %d failed attempts",
                    credential.user_id,
                    to_iso(new_state.account_locked_until),
                    self.lockout.max_attempts,
                )
            else:
                logger.info(
                    "Login failed for user %s (%d failed attempts)",
                    credential.user_id,
                    new_state.failed_login_attempts if new_state else 0,
                )
            raise InvalidCredentialsError()

        state = self.credentials.apply_lockout_transition(credential.user_id, self.lockout, success=True, now=now)
        if state is None:
            logger.info("Login failed: account %s deactivated during login", credential.user_id)
            raise InvalidCredentialsError()
        if self.lockout.is_locked(state, now):
            # A concurrent failure locked the account while the password was checked.
            logger.warning("Login refused for user %s: locked during password check", credential.user_id)
            raise AccountLockedError()
        pair = self.tokens.issue_pair(credential.user_id, credential.email, credential.role)
        self.credentials.update_refresh_token(credential.user_id, self.tokens.fingerprint(pair.refresh_token))
        logger.info("User %s logged in", credential.user_id)
        return LoginResult(
            user_id=credential.user_id,
            username=credential.username,
            email=credential.email,
            role=credential.role,
            tokens=pair,
        )

    def logout(self, claims: TokenClaims) -> None:
        """Drop the stored refresh token. Safe to call repeatedly."""
        user_id = _user_id(claims)
        self.credentials.update_refresh_token(user_id, None)
        logger.info("User %s logged out", user_id)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, authorization: str | None) -> TokenPair:
        """Exchange 'Bearer <refresh token>' for a new access token.

        With rotation on (default) a new refresh token replaces the presented
        one, which can then never be used again. With rotation off the same
        refresh token is handed back.
        """
        if not authorization:
            raise AuthenticationError("Refresh token required.", code="MISSING_REFRESH_TOKEN")
        token = extract_bearer(authorization)
        try:
            claims = self.tokens.verify(token, TokenKind.REFRESH)
        except TokenError as exc:
            logger.info("Refresh rejected: %s", exc.code)
            raise AuthenticationError("Invalid or expired refresh token.", code="INVALID_REFRESH_TOKEN") from exc

        fingerprint = self.tokens.fingerprint(token)
        credential = self.credentials.find_by_refresh_token(fingerprint)
        if credential is None or str(credential.user_id) != claims.subject_id:
            logger.warning("Refresh rejected for user %s: token revoked or superseded", claims.subject_id)
            raise AuthenticationError("Refresh token has been revoked.", code="REFRESH_TOKEN_REVOKED")

        access_token = self.tokens.issue_access(credential.user_id, credential.email, credential.role)
        refresh_token = token
        if self.rotate_refresh_tokens:
            refresh_token = self.tokens.issue_refresh(credential.user_id)
            rotated = self.credentials.rotate_refresh_token(
                credential.user_id, fingerprint, self.tokens.fingerprint(refresh_token)
            )
            if not rotated:
                logger.warning("Refresh for user %s lost the rotation race", credential.user_id)
                raise AuthenticationError("Refresh token has been revoked.", code="REFRESH_TOKEN_REVOKED")
            logger.info("Rotated refresh token for user %s", credential.user_id)

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type=TOKEN_TYPE,
            expires_in=self.tokens.access_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def change_password(self, claims: TokenClaims, current_password: str | None, new_password: str | None) -> None:
        """Replace the password and end every session of this user."""
        if not current_password or not new_password:
            raise ValidationError("Current password and new password are required.", code="MISSING_FIELDS")
        user_id = _user_id(claims)
        credential = self.credentials.find_active_by_user_id(user_id)
        if credential is None:
            raise NotFoundError("Account not found.", code="ACCOUNT_NOT_FOUND")

        if not self.hasher.verify(current_password, credential.password_hash):
            logger.info("Password change refused for user %s: wrong current password", user_id)
            raise AuthenticationError("Current password is incorrect.", code="INVALID_CURRENT_PASSWORD")
        check_password_strength(new_password)
        if self.hasher.verify(new_password, credential.password_hash):
            raise ValidationError("New password must differ from the current password.", code="SAME_PASSWORD")

        self.credentials.update_password(user_id, self.hasher.hash(new_password))
        logger.info("Password changed for user %s, sessions revoked", user_id)

    def request_password_reset(self, email: str | None) -> str:
        """Accept a reset request. The answer is the same whether or not the account exists."""
        if email and self.credentials.find_by_email(email) is not None:
            logger.info("Password reset requested for an existing account")
        else:
            logger.info("Password reset requested for an unknown email")
        return RESET_REQUEST_MESSAGE

    def reset_password(self, token: str | None, new_password: str | None) -> None:
        """Complete a password reset.

        Reset tokens are never issued or stored, so no token can match and
        this always fails closed.
        """
        if not token or not new_password:
            raise ValidationError("Reset token and new password are required.", code="MISSING_FIELDS")
        logger.info("Password reset attempted with an unknown token")
        raise ValidationError("Invalid or expired reset token.", code="INVALID_RESET_TOKEN")


def _user_id(claims: TokenClaims) -> int:
    try:
        return int(claims.subject_id)
    except (TypeError, ValueError) as exc:
        raise TokenInvalidError("Invalid token payload.", code="INVALID_TOKEN_PAYLOAD") from exc
