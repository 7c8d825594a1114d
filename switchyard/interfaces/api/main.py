"""
FastAPI Main Application - HTTP entry point for the orchestrator.

Run with: uvicorn switchyard.interfaces.api.main:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from switchyard import __version__
from switchyard.config import get_settings

from .deps import cleanup_services, get_registry, init_services
from .middleware import (
    ErrorHandlerMiddleware,
    LatencyMiddleware,
    RateLimitMiddleware,
    RequestIDMiddleware,
)
from .routes import cache, chat, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open storage and start the cache sweeper; close backends on shutdown."""
    registry = get_registry()
    logger.info(
        "Switchyard %s starting: local=%s, available=%s",
        __version__,
        registry.local_id,
        ", ".join(registry.available_ids()),
    )
    await init_services()

    yield

    logger.info("Switchyard shutting down")
    await cleanup_services()


def create_app() -> FastAPI:
    """Build the application (also the uvicorn factory target)."""
    settings = get_settings()

    app = FastAPI(
        title="Switchyard API",
        description="Local-first LLM orchestration with quality-gated escalation",
        version=__version__,
        lifespan=lifespan,
        debug=settings.api_debug,
    )

    # Added innermost first: rate limit runs after the request ID is assigned
    app.add_middleware(RateLimitMiddleware, requests_per_minute=settings.api_rate_limit_rpm)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(LatencyMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_cors_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "X-Response-Time-Ms"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(chat.router, prefix="/api", tags=["Chat"])
    app.include_router(cache.router, prefix="/api/cache", tags=["Cache"])

    return app


app = create_app()
