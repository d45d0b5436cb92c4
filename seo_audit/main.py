"""
SEO Audit Tool - Main Application Entry Point
FastAPI application with lifespan management.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from seo_audit.api.v1.routes import audits, health, reports
from seo_audit.core.config import get_settings
from seo_audit.core.logging import configure_logging
from seo_audit.core.redis import close_redis_pool, get_redis_client
from seo_audit.core.taxonomy import TAXONOMY_VERSION

logger = structlog.get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Manage application lifecycle: startup and shutdown."""
    configure_logging()
    logger.info(
        "Starting SEO Audit Tool",
        version=settings.APP_VERSION,
        env=settings.ENV,
        taxonomy_version=TAXONOMY_VERSION,
        progress_backend=settings.PROGRESS_BACKEND,
    )

    if settings.PROGRESS_BACKEND == "redis":
        await get_redis_client().ping()
        logger.info("Redis connection verified")

    yield

    # Graceful shutdown
    if settings.PROGRESS_BACKEND == "redis":
        await close_redis_pool()
    logger.info("Application shutdown complete")


def create_application() -> FastAPI:
    app = FastAPI(
        title="SEO Audit Tool API",
        description="Crawls a website and reports on-page and technical SEO issues.",
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.ENV != "production" else None,
        redoc_url="/redoc" if settings.ENV != "production" else None,
        lifespan=lifespan,
    )

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Routers
    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(audits.router, prefix="/api/v1/audits", tags=["Audits"])
    app.include_router(reports.router, prefix="/api/v1/reports", tags=["Reports"])

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "request_id": request.headers.get("x-request-id")},
        )

    return app


app = create_application()
