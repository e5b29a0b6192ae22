"""
Shared error handling for the Carrier Access Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthInvalidError(AccessLayerException):
    """The API key itself was rejected by the upstream."""

    status_code = 400

    def __init__(self, message: str = "Invalid API key", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTH_INVALID", message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class RateLimitError(AccessLayerException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)


class UpstreamUnavailableError(AccessLayerException):
    """Upstream 5xx, network failure or deadline exceeded."""

    status_code = 503

    def __init__(
        self,
        message: str = "Upstream service unavailable",
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__("UPSTREAM_UNAVAILABLE", message, details, status_code)


class UpstreamDecodeError(AccessLayerException):
    """An upstream payload did not match its declared schema."""

    status_code = 502

    def __init__(self, message: str = "Malformed upstream response", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_DECODE_ERROR", message, details)


class TokenRequestError(AccessLayerException):
    """The authorization endpoint answered with a non-success status."""

    def __init__(self, upstream_status: int, message: Optional[str] = None):
        super().__init__(
            "TOKEN_REQUEST_FAILED",
            message or f"Carrier auth failed: {upstream_status}",
            {"upstream_status": upstream_status},
            status_code=upstream_status,
        )
        self.upstream_status = upstream_status


class ApiKeyNotConfiguredError(AccessLayerException):
    """The current user has not stored an API key yet."""

    status_code = 400

    def __init__(self, message: str = "API ключ не налаштовано. Перейдіть у налаштування."):
        super().__init__("API_KEY_NOT_CONFIGURED", message)


class NotAuthenticatedError(AccessLayerException):
    """No authenticated user identity accompanied the request."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__("UNAUTHORIZED", message)
