"""
Shared error handling for the World Monitor gateway.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from .logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class MonitorException(Exception):
    """Base exception for gateway services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class HandlerError(MonitorException):
    """A data-fetching handler raised or returned something unusable."""

    status_code = 500

    def __init__(self, route: str, message: str = "Handler failed", details: Optional[Dict[str, Any]] = None):
        self.route = route
        super().__init__("HANDLER_ERROR", f"{route}: {message}", details)


class PayloadTooLargeError(MonitorException):
    """Inbound request body exceeds the configured limit."""

    status_code = 413

    def __init__(self, limit: int, details: Optional[Dict[str, Any]] = None):
        self.limit = limit
        super().__init__("PAYLOAD_TOO_LARGE", f"Request body exceeds {limit} bytes", details)


class RouteTableError(MonitorException):
    """The handler route table could not be loaded at startup."""

    status_code = 500

    def __init__(self, message: str = "Route table could not be loaded", details: Optional[Dict[str, Any]] = None):
        super().__init__("ROUTE_TABLE_ERROR", message, details)


class RelayError(MonitorException):
    """Upstream relay connection failures."""

    status_code = 502

    def __init__(self, message: str = "Upstream relay error", details: Optional[Dict[str, Any]] = None):
        super().__init__("RELAY_ERROR", message, details)
