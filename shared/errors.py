"""
Shared error handling for the distributed limiters.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class LimiterException(Exception):
    """Base exception for limiter failures."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(LimiterException):
    """Invalid limiter policy parameters."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class StorageError(LimiterException):
    """Shared bucket store failures."""

    def __init__(self, message: str = "Storage error", details: Optional[Dict[str, Any]] = None,
                 code: str = "STORAGE_ERROR"):
        super().__init__(code, message, details)


class StorageUnavailable(StorageError):
    """The shared store (or its mutex) cannot be reached."""

    def __init__(self, message: str = "Storage unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="STORAGE_UNAVAILABLE")


class StorageCorrupt(StorageError):
    """A stored bucket value cannot be decoded."""

    def __init__(self, message: str = "Storage value corrupt", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="STORAGE_CORRUPT")


class LockBackendError(LimiterException):
    """Worker slot lock backend failures."""

    def __init__(self, message: str = "Lock backend error", details: Optional[Dict[str, Any]] = None):
        super().__init__("LOCK_BACKEND_ERROR", message, details)


class LimitExceeded(LimiterException):
    """A named resource is saturated."""

    def __init__(self, code: str, name: str, message: str, timed_out: bool = False):
        self.name = name
        self.timed_out = timed_out
        super().__init__(code, message, {"name": name, "kind": self.kind})

    @property
    def kind(self) -> str:
        return "timeout" if self.timed_out else "denied"


class RateLimitExceeded(LimitExceeded):
    """Token bucket had too few tokens."""

    def __init__(self, name: str, timed_out: bool = False):
        super().__init__("RATE_LIMIT_EXCEEDED", name, f"{name} Rate Limit", timed_out)


class WorkerLimitExceeded(LimitExceeded):
    """All worker slots for a name are held."""

    def __init__(self, name: str, timed_out: bool = False):
        super().__init__("WORKER_LIMIT_EXCEEDED", name, f"{name} Worker Limit", timed_out)
