"""
auth/errors.py -- Exception taxonomy for the authentication subsystem.

Every exception carries an HTTP status_code, a stable machine-readable code
and a user-facing message. api/main.py renders them all through a single
exception handler into the standard error envelope, so services raise and
routes stay thin.

  AuthError
  +-- ValidationError (400)
  +-- AuthenticationError (401)
  |   +-- InvalidCredentialsError
  |   +-- TokenError
  |       +-- TokenExpiredError
  |       +-- TokenInvalidError
  |       +-- TokenNotYetValidError
  |       +-- TokenTypeError
  |       +-- BearerFormatError
  +-- AccountLockedError (403)
  +-- AuthorizationError (403)
  +-- NotFoundError (404)
  +-- ConflictError (409)
  +-- ServerError (500)
      +-- HashingError
      +-- ConfigurationError
      +-- AuthorizationConfigError
      +-- RegistrationRollbackError

Messages on 401/403 never say which factor failed. Server errors keep their
internal detail in `log_detail` for the server log; clients only see the
generic message.

Layer rule: no imports from api/, profiles/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all authentication and authorization failures."""

    status_code: int = 400
    code: str = "AUTH_ERROR"
    message: str = "Request could not be processed."

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        detail: dict | None = None,
        log_detail: str | None = None,
    ) -> None:
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        self.detail = detail
        self.log_detail = log_detail
        super().__init__(log_detail or self.message)


class ValidationError(AuthError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid request."


class AuthenticationError(AuthError):
    status_code = 401
    code = "AUTHENTICATION_REQUIRED"
    message = "Authentication required. Please login first."


class InvalidCredentialsError(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password."


class TokenError(AuthenticationError):
    code = "TOKEN_VERIFICATION_FAILED"
    message = "Token verification failed."


class TokenExpiredError(TokenError):
    code = "TOKEN_EXPIRED"
    message = "Token has expired."


class TokenInvalidError(TokenError):
    code = "INVALID_TOKEN"
    message = "Invalid token provided."


class TokenNotYetValidError(TokenError):
    code = "TOKEN_NOT_ACTIVE"
    message = "Token is not yet active."


class TokenTypeError(TokenError):
    code = "INVALID_TOKEN_TYPE"
    message = "Token type is not accepted here."


class BearerFormatError(TokenError):
    code = "INVALID_HEADER_FORMAT"
    message = "Invalid authorization header format. Expected: Bearer <token>"


class AccountLockedError(AuthError):
    status_code = 403
    code = "ACCOUNT_LOCKED"
    message = "Account temporarily locked after repeated failed login attempts."


class AuthorizationError(AuthError):
    status_code = 403
    code = "INSUFFICIENT_PRIVILEGES"
    message = "Access denied. Insufficient privileges."


class NotFoundError(AuthError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Resource not found."


class ConflictError(AuthError):
    status_code = 409
    code = "CONFLICT"
    message = "Resource already exists."


class ServerError(AuthError):
    status_code = 500
    code = "INTERNAL_ERROR"
    message = "An unexpected error occurred."


class HashingError(ServerError):
    code = "HASHING_ERROR"


class ConfigurationError(ServerError):
    code = "CONFIGURATION_ERROR"
    message = "Server configuration error."


class AuthorizationConfigError(ServerError):
    code = "AUTHORIZATION_CONFIG_ERROR"
    message = "Server configuration error."


class RegistrationRollbackError(ServerError):
    code = "REGISTRATION_ROLLBACK_FAILED"
