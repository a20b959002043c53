from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code rendered in the error envelope:
    - unauthorized (401)
    - not_found (404)
    - validation_error (400)
    - conflict (409)
    - upstream_error (502)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentials(AuthenticationError):
    """Phone/code shape or value rejected, or the exchange code is missing."""


class InvalidRefreshToken(AuthenticationError):
    """Refresh token failed signature, expiry or registry checks.

    The failing check is never reported to the caller.
    """


class Unauthorized(AuthenticationError):
    """Access token missing, revoked, expired or forged."""


class MissingIdentifier(ValidationError):
    """Identity provider returned no openId."""


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class UserNotFound(NotFoundError):
    pass


class ProviderError(ServiceError):
    """Network or API failure talking to an external provider (502)."""
    status_code = 502
    error_code = "upstream_error"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class TokenSigningError(ServerError):
    """Token could not be signed, usually a misconfigured secret."""


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "InvalidCredentials",
    "InvalidRefreshToken",
    "Unauthorized",
    "MissingIdentifier",
    "NotFoundError",
    "UserNotFound",
    "ProviderError",
    "ServerError",
    "TokenSigningError",
]
