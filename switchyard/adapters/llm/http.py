"""
HTTP Helpers - Shared httpx error translation and transport retries.

Both HTTP adapters (Ollama, OpenAI-compatible) map httpx failures onto the
same BackendError subclasses so callers can fall back without knowing
which vendor failed.
"""

from __future__ import annotations

import logging

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from switchyard.config.errors import (
    BackendError,
    BackendRateLimitError,
    BackendResponseError,
    BackendTimeoutError,
    BackendUnavailableError,
    ErrorCode,
)

logger = logging.getLogger(__name__)

__all__ = ["translate_http_error", "transport_retry"]

# Connection failures and timeouts are retried; status errors go to the fallback
transport_retry = retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def translate_http_error(backend_id: str, error: Exception) -> BackendError:
    """
    Map an httpx (or payload) failure onto the backend error taxonomy.

    Args:
        backend_id: Backend that failed
        error: The raised exception

    Returns:
        BackendError subclass carrying a machine-readable code
    """
    if isinstance(error, BackendError):
        return error

    if isinstance(error, httpx.TimeoutException):
        return BackendTimeoutError(backend_id, f"{backend_id} timed out: {error}")

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        details = {"status_code": status}
        if status == 429:
            return BackendRateLimitError(backend_id, f"{backend_id} rate limited", details)
        if status in (401, 403):
            return BackendError(
                backend_id,
                f"{backend_id} rejected credentials (HTTP {status})",
                code=ErrorCode.BACKEND_AUTH_FAILED,
                details=details,
            )
        return BackendResponseError(backend_id, f"{backend_id} returned HTTP {status}", details)

    if isinstance(error, httpx.TransportError):
        return BackendUnavailableError(backend_id, f"{backend_id} unreachable: {error}")

    return BackendResponseError(backend_id, f"{backend_id} sent an invalid response: {error}")
