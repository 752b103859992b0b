from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code:
    - unauthorized (401)
    - not_found (404)
    - validation_error (400)
    - conflict (409)
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

    def __init__(self, message: str, *, field: Optional[str] = None, **kwargs) -> None:
        detail = kwargs.pop("detail", None) or {}
        if field:
            detail = {**detail, "field": field}
        super().__init__(message, detail=detail, **kwargs)
        self.field = field


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class MissingTokenError(AuthenticationError):
    """No bearer token on the request."""

    def __init__(self, message: str = "authorization token missing", **kwargs) -> None:
        super().__init__(message, **kwargs)


class InvalidTokenError(AuthenticationError):
    """Token is malformed, forged, revoked or belongs to nobody.

    Every cause shares one message so callers cannot tell them apart.
    """

    def __init__(self, message: str = "please authenticate", **kwargs) -> None:
        super().__init__(message, **kwargs)


class InvalidCredentialsError(AuthenticationError):
    def __init__(self, message: str = "unable to login", **kwargs) -> None:
        super().__init__(message, **kwargs)


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "MissingTokenError",
    "InvalidTokenError",
    "InvalidCredentialsError",
    "NotFoundError",
]
