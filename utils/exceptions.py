# utils/exceptions.py
"""
Dokus error hierarchy and FastAPI handlers.

Services raise DokusException subclasses; the handler registered in main.py
turns them into JSON responses:

    {"error": "RESOURCE_NOT_FOUND", "message": "Contact not found", "details": {}}

Usage:
    from utils.exceptions import NotFound

    if contact is None:
        raise NotFound("Contact not found")
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DokusException(Exception):
    """Base class for every domain error exposed over HTTP."""

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# ==================================================
# 400
# ==================================================

class BadRequest(DokusException):
    http_status = status.HTTP_400_BAD_REQUEST
    error_code = "BAD_REQUEST"
    default_message = "Bad request"


class ValidationError(BadRequest):
    error_code = "VALIDATION_ERROR"
    default_message = "Validation failed"


class PasswordResetTokenInvalid(BadRequest):
    error_code = "PASSWORD_RESET_TOKEN_INVALID"
    default_message = "Password reset token is invalid"


class PasswordResetTokenExpired(BadRequest):
    error_code = "PASSWORD_RESET_TOKEN_EXPIRED"
    default_message = "Password reset token has expired"


class PasswordResetTokenUsed(BadRequest):
    error_code = "PASSWORD_RESET_TOKEN_USED"
    default_message = "Password reset token was already used"


# ==================================================
# 401
# ==================================================

class NotAuthenticated(DokusException):
    http_status = status.HTTP_401_UNAUTHORIZED
    error_code = "NOT_AUTHENTICATED"
    default_message = "Authentication required"


class InvalidCredentials(NotAuthenticated):
    error_code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"


class TokenExpired(NotAuthenticated):
    error_code = "TOKEN_EXPIRED"
    default_message = "Access token has expired"


class TokenInvalid(NotAuthenticated):
    error_code = "TOKEN_INVALID"
    default_message = "Token is invalid"


class RefreshTokenExpired(NotAuthenticated):
    error_code = "REFRESH_TOKEN_EXPIRED"
    default_message = "Refresh token has expired"


class RefreshTokenRevoked(NotAuthenticated):
    error_code = "REFRESH_TOKEN_REVOKED"
    default_message = "Refresh token has been revoked"


class SessionInvalid(NotAuthenticated):
    error_code = "SESSION_INVALID"
    default_message = "Session is no longer valid"


# ==================================================
# 403
# ==================================================

class NotAuthorized(DokusException):
    http_status = status.HTTP_403_FORBIDDEN
    error_code = "NOT_AUTHORIZED"
    default_message = "You are not allowed to perform this action"


class AccountInactive(NotAuthorized):
    error_code = "ACCOUNT_INACTIVE"
    default_message = "Account is inactive"


class TenantNotSelected(NotAuthorized):
    error_code = "TENANT_NOT_SELECTED"
    default_message = "Select a workspace first"


# ==================================================
# 404 / 409
# ==================================================

class NotFound(DokusException):
    http_status = status.HTTP_404_NOT_FOUND
    error_code = "RESOURCE_NOT_FOUND"
    default_message = "Resource not found"


class Conflict(DokusException):
    http_status = status.HTTP_409_CONFLICT
    error_code = "CONFLICT"
    default_message = "Resource conflict"


class UserAlreadyExists(Conflict):
    error_code = "USER_ALREADY_EXISTS"
    default_message = "A user with this email already exists"


# ==================================================
# 429 / 5xx
# ==================================================

class TooManyLoginAttempts(DokusException):
    http_status = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "TOO_MANY_LOGIN_ATTEMPTS"
    default_message = "Too many login attempts"

    def __init__(self, retry_after_seconds: int = 60, message: Optional[str] = None):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            message or f"Too many login attempts. Try again in {retry_after_seconds} seconds.",
            {"retry_after_seconds": retry_after_seconds},
        )


class ExternalServiceError(DokusException):
    http_status = status.HTTP_502_BAD_GATEWAY
    error_code = "EXTERNAL_SERVICE_ERROR"
    default_message = "External service failed"


class InternalError(DokusException):
    pass


# ==================================================
# HANDLERS
# ==================================================

async def dokus_exception_handler(request: Request, exc: DokusException) -> JSONResponse:
    """Serialises a DokusException as JSON with its HTTP status."""
    if exc.http_status >= 500:
        logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error_code} on {request.url.path}: {exc.message}")

    headers = None
    if isinstance(exc, TooManyLoginAttempts):
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    return JSONResponse(status_code=exc.http_status, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Installs the Dokus handlers on the application."""
    app.add_exception_handler(DokusException, dokus_exception_handler)
