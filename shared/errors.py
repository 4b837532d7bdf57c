"""
Shared error handling for the TicketMesh dashboard backend.

The outbound Discord layer raises exactly three error kinds:

- ``RateLimitedError``: the gate blocked the call or Discord answered 429.
- ``UpstreamConnectionError``: transport failure or missing configuration.
- ``UpstreamError``: any other non-2xx answer from the upstream.

Each carries the HTTP status the dashboard should answer with, so route
handlers can let them propagate to the service-level exception handler.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class DashboardException(Exception):
    """Base exception for dashboard services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(DashboardException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(DashboardException):
    """The caller is known but may not act on the resource."""

    status_code = 403

    def __init__(self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class ValidationError(DashboardException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class RateLimitedError(DashboardException):
    """The endpoint is rate limited; retry after ``retry_after`` seconds."""

    status_code = 429

    def __init__(self, retry_after: int, endpoint: Optional[str] = None,
                 message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.retry_after = retry_after
        self.endpoint = endpoint
        payload = {"retry_after": retry_after}
        if endpoint:
            payload["endpoint"] = endpoint
        payload.update(details or {})
        super().__init__(
            "RATE_LIMITED",
            message or f"Rate limited, retry after {retry_after}s",
            payload
        )


class UpstreamConnectionError(DashboardException):
    """Transport failure or missing configuration for an upstream."""

    status_code = 502

    def __init__(self, service: str, message: str = "Upstream unavailable", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("UPSTREAM_UNAVAILABLE", f"{service}: {message}", details)


class UpstreamError(DashboardException):
    """The upstream rejected the request with a non-2xx status."""

    status_code = 502

    def __init__(self, service: str, upstream_status: int, message: str = "Upstream error",
                 details: Optional[Dict[str, Any]] = None):
        self.service = service
        self.upstream_status = upstream_status
        payload = {"upstream_status": upstream_status}
        payload.update(details or {})
        super().__init__("UPSTREAM_ERROR", f"{service}: {message}", payload)
