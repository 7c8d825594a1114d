"""
Error Taxonomy - Consistent error codes across the application.

Usage:
    from switchyard.config.errors import BackendError, ErrorCode

    raise BackendError("claude", "Connection refused", code=ErrorCode.BACKEND_UNAVAILABLE)

Quality-gate failures are never errors; they are reported as low scores
with an ``escalate`` recommendation.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for machine-readable error responses."""

    # Backend errors
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    BACKEND_TIMEOUT = "BACKEND_TIMEOUT"
    BACKEND_INVALID_RESPONSE = "BACKEND_INVALID_RESPONSE"
    BACKEND_RATE_LIMITED = "BACKEND_RATE_LIMITED"
    BACKEND_AUTH_FAILED = "BACKEND_AUTH_FAILED"
    BACKEND_NOT_CONFIGURED = "BACKEND_NOT_CONFIGURED"

    # Request lifecycle
    REQUEST_ABORTED = "REQUEST_ABORTED"

    # Cache errors
    CACHE_READ_FAILED = "CACHE_READ_FAILED"
    CACHE_WRITE_FAILED = "CACHE_WRITE_FAILED"

    # Storage errors
    STORAGE_CONNECTION_FAILED = "STORAGE_CONNECTION_FAILED"
    STORAGE_READ_FAILED = "STORAGE_READ_FAILED"
    STORAGE_WRITE_FAILED = "STORAGE_WRITE_FAILED"
    AUDIT_WRITE_FAILED = "AUDIT_WRITE_FAILED"

    # Security errors
    SECURITY_RATE_LIMITED = "SECURITY_RATE_LIMITED"

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"


class SwitchyardError(Exception):
    """Base exception with error code support."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to API-friendly dictionary."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class BackendError(SwitchyardError):
    """A language-model backend failed (timeout, non-2xx, connection failure)."""

    def __init__(
        self,
        backend: str,
        message: str,
        code: ErrorCode = ErrorCode.BACKEND_UNAVAILABLE,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.backend = backend
        super().__init__(code, message, {"backend": backend, **(details or {})})


class BackendUnavailableError(BackendError):
    """Backend unreachable or not configured."""

    def __init__(self, backend: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(backend, message, ErrorCode.BACKEND_UNAVAILABLE, details)


class BackendTimeoutError(BackendError):
    """Backend did not answer in time."""

    def __init__(self, backend: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(backend, message, ErrorCode.BACKEND_TIMEOUT, details)


class BackendResponseError(BackendError):
    """Backend answered with a non-2xx status or a malformed payload."""

    def __init__(self, backend: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(backend, message, ErrorCode.BACKEND_INVALID_RESPONSE, details)


class BackendRateLimitError(BackendError):
    """Backend rejected the call because of its rate limit."""

    def __init__(self, backend: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(backend, message, ErrorCode.BACKEND_RATE_LIMITED, details)


class RequestAbortedError(SwitchyardError):
    """The caller aborted the request."""

    def __init__(self, message: str = "Request aborted by user", details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.REQUEST_ABORTED, message, details)


class CacheError(SwitchyardError):
    """Response cache read or write failure (never fails a query)."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CACHE_READ_FAILED,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(code, message, details)


class StorageError(SwitchyardError):
    """Storage/database errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.STORAGE_CONNECTION_FAILED,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(code, message, details)
