"""
API Middleware - Cross-cutting request handling.

Provides:
- Request IDs (honours an incoming X-Request-ID)
- Per-request timing header and access log line
- SwitchyardError -> structured JSON with a taxonomy-derived status
- Sliding-window rate limiting per client address
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from switchyard.config.errors import ErrorCode, SwitchyardError

logger = logging.getLogger(__name__)

__all__ = [
    "ErrorHandlerMiddleware",
    "LatencyMiddleware",
    "RateLimitMiddleware",
    "RequestIDMiddleware",
    "error_status",
]

CallNext = Callable[[Request], Awaitable[Response]]

_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.SECURITY_RATE_LIMITED: 429,
    ErrorCode.BACKEND_RATE_LIMITED: 429,
    ErrorCode.REQUEST_ABORTED: 499,  # client closed request
    ErrorCode.BACKEND_INVALID_RESPONSE: 502,
    ErrorCode.BACKEND_AUTH_FAILED: 502,
    ErrorCode.BACKEND_UNAVAILABLE: 503,
    ErrorCode.BACKEND_NOT_CONFIGURED: 503,
    ErrorCode.STORAGE_CONNECTION_FAILED: 503,
    ErrorCode.BACKEND_TIMEOUT: 504,
}


def error_status(code: ErrorCode) -> int:
    """HTTP status for an error code (500 when unmapped)."""
    return _STATUS_BY_CODE.get(code, 500)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _error_response(
    request: Request,
    status_code: int,
    error: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "request_id": _request_id(request)},
        headers=headers,
    )


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag every request with an ID, echoed back in X-Request-ID."""

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request.state.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        return response


class LatencyMiddleware(BaseHTTPMiddleware):
    """Add X-Response-Time-Ms and write one access log line per request."""

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        started = time.perf_counter()
        response = await call_next(request)

        # For SSE this is time to first byte, not stream duration
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
        logger.info(
            "%s %s -> %d in %.1fms [%s]",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            _request_id(request),
        )
        return response


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turn escaped exceptions into JSON error bodies."""

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        try:
            return await call_next(request)
        except SwitchyardError as e:
            logger.error(
                "%s on %s: %s details=%s [%s]",
                e.code.value,
                request.url.path,
                e.message,
                e.details,
                _request_id(request),
            )
            return _error_response(request, error_status(e.code), e.to_dict())
        except Exception:
            logger.exception("Unhandled error on %s [%s]", request.url.path, _request_id(request))
            return _error_response(
                request,
                500,
                {"code": ErrorCode.INTERNAL_ERROR.value, "message": "Internal server error", "details": {}},
            )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding one-minute window per client address.

    Health checks are never limited.
    """

    window_seconds = 60.0
    exempt_paths = frozenset({"/health"})

    def __init__(self, app: ASGIApp, requests_per_minute: int = 60) -> None:
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def _retry_after(self, hits: deque[float], now: float) -> int:
        return max(1, math.ceil(hits[0] + self.window_seconds - now))

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        now = time.monotonic()
        hits = self._hits[client]
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()

        if len(hits) >= self.requests_per_minute:
            retry_after = self._retry_after(hits, now)
            logger.warning("Rate limit hit for %s [%s]", client, _request_id(request))
            return _error_response(
                request,
                429,
                {
                    "code": ErrorCode.SECURITY_RATE_LIMITED.value,
                    "message": f"Too many requests, retry in {retry_after}s",
                    "details": {"retry_after": retry_after},
                },
                headers={"Retry-After": str(retry_after)},
            )

        hits.append(now)
        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(self.requests_per_minute - len(hits))
        return response
