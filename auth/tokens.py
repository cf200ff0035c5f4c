"""
auth/tokens.py -- Typed JWT issuance and verification, bearer parsing,
refresh-token fingerprints.

Security design decisions:
  JWT: python-jose with HS256. Two token kinds share one payload shape
       {sub, email, role, type, iss, aud, iat, exp, jti}. Refresh tokens omit
       email and role -- they are only ever exchanged for a new access token,
       and that access token is built from the stored profile, not from the
       refresh token.

  Distinct secrets per kind [S2]. The access secret signs access tokens only,
      the refresh secret signs refresh tokens only. TokenService refuses to
      start when the two are equal or shorter than 32 characters.

  Type confusion. verify() checks claims["type"] == expected kind after a
      successful decode. A token that fails the expected signature but is
      validly signed for the other kind is reported as TokenTypeError, so a
      refresh token replayed on an access endpoint is named for what it is.

  Distinct failure kinds. Expired, invalid (malformed, bad signature, wrong
      issuer/audience), not-yet-valid and wrong-type each raise their own
      exception so callers can map them to distinct codes.

  jti. Every token carries a random id. Without it two tokens issued for the
      same subject within one second are byte-identical, and rotation would
      hand back the token it is meant to invalidate.

  Fingerprints. Refresh tokens are persisted as HMAC-SHA256(refresh secret,
      token). A leaked database row cannot be replayed without the secret, and
      the deterministic digest keeps lookup O(1).

Layer rule: no imports from api/ or profiles/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import (
    BearerFormatError,
    ConfigurationError,
    TokenError,
    TokenExpiredError,
    TokenInvalidError,
    TokenNotYetValidError,
    TokenTypeError,
)
from auth.models import TokenClaims, TokenKind, TokenPair

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("sigl.auth.tokens")

ALGORITHM = "HS256"
TOKEN_TYPE = "Bearer"
MIN_SECRET_LENGTH = 32


class TokenService:
    """Issues and verifies access/refresh tokens.

    One instance per process, built at startup from Settings and shared by
    every request. Holds configuration only -- no per-request state.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        *,
        issuer: str = "learning-management-system",
        audience: str = "lms-users",
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 7 * 24 * 60 * 60,
    ) -> None:
        for name, secret in (("access", access_secret), ("refresh", refresh_secret)):
            if not secret or len(secret) < MIN_SECRET_LENGTH:
                raise ConfigurationError(
                    log_detail=f"The {name} token secret must be at least {MIN_SECRET_LENGTH} characters long."
                )
        if access_secret == refresh_secret:
            raise ConfigurationError(log_detail="Access and refresh token secrets must be different.")
        self._secrets = {TokenKind.ACCESS: access_secret, TokenKind.REFRESH: refresh_secret}
        self._ttl = {TokenKind.ACCESS: access_ttl_seconds, TokenKind.REFRESH: refresh_ttl_seconds}
        self.issuer = issuer
        self.audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenService:
        return cls(
            settings.jwt_access_secret,
            settings.jwt_refresh_secret,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl_seconds=settings.access_token_expire_seconds,
            refresh_ttl_seconds=settings.refresh_token_expire_seconds,
        )

    @property
    def access_ttl_seconds(self) -> int:
        return self._ttl[TokenKind.ACCESS]

    @property
    def refresh_ttl_seconds(self) -> int:
        return self._ttl[TokenKind.REFRESH]

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def _encode(self, kind: TokenKind, payload: dict) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            **payload,
            "type": kind.value,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + timedelta(seconds=self._ttl[kind]),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self._secrets[kind], algorithm=ALGORITHM)

    def issue_access(self, subject_id: int | str, email: str, role: str) -> str:
        """Encode a signed access token carrying identity and role."""
        if not subject_id or not email or not role:
            raise ValueError("subject_id, email and role are required for an access token")
        return self._encode(
            TokenKind.ACCESS,
            {"sub": str(subject_id), "email": email.lower(), "role": str(role)},
        )

    def issue_refresh(self, subject_id: int | str) -> str:
        """Encode a signed refresh token. Carries no email or role."""
        if not subject_id:
            raise ValueError("subject_id is required for a refresh token")
        return self._encode(TokenKind.REFRESH, {"sub": str(subject_id)})

    def issue_pair(self, subject_id: int | str, email: str, role: str) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access(subject_id, email, role),
            refresh_token=self.issue_refresh(subject_id),
            token_type=TOKEN_TYPE,
            expires_in=self.access_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, token: str, expected_kind: TokenKind | str) -> TokenClaims:
        """Decode and fully validate a token of the expected kind.

        Raises TokenExpiredError, TokenInvalidError, TokenNotYetValidError or
        TokenTypeError. Never returns claims of the other kind.
        """
        if not isinstance(token, str) or not token:
            raise TokenInvalidError(log_detail="Token must be a non-empty string")
        kind = TokenKind(expected_kind)

        try:
            payload = jwt.decode(
                token,
                self._secrets[kind],
                algorithms=[ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                # nbf is checked below so that it gets its own error kind.
                options={"verify_nbf": False},
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except JWTError as exc:
            if self._signed_as_other_kind(token, kind):
                raise TokenTypeError(log_detail=f"Expected a {kind.value} token") from exc
            raise TokenInvalidError(log_detail=str(exc)) from exc

        nbf = payload.get("nbf")
        if nbf is not None and float(nbf) > time.time():
            raise TokenNotYetValidError()

        if payload.get("type") != kind.value:
            raise TokenTypeError(log_detail=f"Expected {kind.value}, got {payload.get('type')!r}")

        subject = payload.get("sub")
        if not subject:
            raise TokenInvalidError(log_detail="Token has no subject")

        exp = payload.get("exp")
        return TokenClaims(
            subject_id=str(subject),
            type=kind,
            email=payload.get("email"),
            role=payload.get("role"),
            token_id=payload.get("jti"),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp is not None else None,
        )

    def _signed_as_other_kind(self, token: str, kind: TokenKind) -> bool:
        """Return True if the token is validly signed for the opposite kind."""
        other = TokenKind.REFRESH if kind is TokenKind.ACCESS else TokenKind.ACCESS
        try:
            payload = jwt.decode(
                token,
                self._secrets[other],
                algorithms=[ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_exp": False, "verify_nbf": False},
            )
        except JWTError:
            return False
        return payload.get("type") == other.value

    def is_expired(self, token: str, kind: TokenKind | str = TokenKind.ACCESS) -> bool:
        """Return True only when the token fails verification because it expired."""
        try:
            self.verify(token, kind)
        except TokenExpiredError:
            return True
        except TokenError:
            return False
        return False

    # ------------------------------------------------------------------
    # Refresh-token fingerprints
    # ------------------------------------------------------------------

    def fingerprint(self, refresh_token: str) -> str:
        """Return HMAC-SHA256(refresh secret, token) as hex -- the stored form."""
        return hmac.new(
            self._secrets[TokenKind.REFRESH].encode(),
            refresh_token.encode(),
            hashlib.sha256,
        ).hexdigest()


def extract_bearer(header_value: str | None) -> str:
    """Return the token from an exact 'Bearer <token>' header value.

    Any other shape -- missing, wrong scheme, extra parts, empty token -- is a
    BearerFormatError.
    """
    if not header_value:
        raise BearerFormatError(log_detail="Authorization header is required")
    parts = header_value.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise BearerFormatError()
    return parts[1]
