"""
Shared error handling for the response cache layer.
"""

from typing import Dict, Any, Optional
from opentelemetry import trace
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ResponseCacheException(Exception):
    """Base exception for the response cache layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class CacheConfigurationError(ResponseCacheException):
    """Invalid cache configuration, raised while the cache is being built."""

    def __init__(self, message: str = "Invalid cache configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_CONFIGURATION_ERROR", message, details)


class CacheBackendError(ResponseCacheException):
    """Cache backend read or write failure."""

    def __init__(self, operation: str, message: str = "Cache backend error", details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__("CACHE_BACKEND_ERROR", f"{operation}: {message}", details)


class PolicyFunctionError(ResponseCacheException):
    """A key or TTL function failed or returned an unusable value."""

    def __init__(self, policy: str, message: str = "Policy function failed", details: Optional[Dict[str, Any]] = None):
        self.policy = policy
        super().__init__("CACHE_POLICY_ERROR", f"{policy}: {message}", details)
