#!/usr/bin/env python3
"""
FastAPI Application Entry Point

Hosts the tiered cache's operational endpoints. The cache is constructed
once in the lifespan, stored on ``app.state.cache`` and closed on shutdown.

Author: Senior Solution Architect
Date: 2025-12-05
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tiercache.application.api.routes.cache import metrics_router
from tiercache.application.api.routes.cache import router as cache_router
from tiercache.core.config.constants import API_BASE_PATH, HEADER_REQUEST_ID
from tiercache.core.config.settings import get_settings
from tiercache.core.exceptions import InvalidCacheKeyError, TierCacheError
from tiercache.core.logging.logger import clear_request_id, get_logger, set_request_id, setup_logging
from tiercache.infrastructure.cache.coordinator import TieredCache
from tiercache.infrastructure.cache.factory import build_tiered_cache

logger = get_logger(__name__)


def create_app(cache: TieredCache | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        cache: Pre-built cache to serve (tests); built from settings when omitted

    Returns:
        FastAPI: Configured application instance
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)
        logger.info(
            "Starting tiered cache service",
            environment=settings.app.ENVIRONMENT,
            version=settings.app.APP_VERSION,
        )

        tiered_cache = cache or build_tiered_cache(settings)
        try:
            await tiered_cache.start()
            app.state.cache = tiered_cache
            logger.info("Application startup complete")
            yield
        finally:
            logger.info("Shutting down application")
            app.state.cache = None
            await tiered_cache.close()
            logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.app.APP_NAME,
        version=settings.app.APP_VERSION,
        description="Tiered, health-aware cache service",
        lifespan=lifespan,
    )

    app.include_router(cache_router, prefix=API_BASE_PATH)
    app.include_router(metrics_router)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Inject a request ID into the logging context for correlation."""
        request_id = request.headers.get(HEADER_REQUEST_ID) or str(uuid.uuid4())
        set_request_id(request_id)
        try:
            response = await call_next(request)
            response.headers[HEADER_REQUEST_ID] = request_id
            return response
        finally:
            clear_request_id()

    @app.exception_handler(InvalidCacheKeyError)
    async def invalid_key_handler(request: Request, exc: InvalidCacheKeyError):
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(TierCacheError)
    async def cache_error_handler(request: Request, exc: TierCacheError):
        logger.error(f"Cache exception: {exc.message}", error_type=type(exc).__name__)
        return JSONResponse(status_code=500, content=exc.to_dict())

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "name": settings.app.APP_NAME,
            "version": settings.app.APP_VERSION,
            "environment": settings.app.ENVIRONMENT,
            "stats": f"{API_BASE_PATH}/cache/stats",
            "health": f"{API_BASE_PATH}/cache/health",
        }

    return app
