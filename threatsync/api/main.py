"""Main FastAPI application with middleware, exception handlers, and routing."""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from threatsync import __version__
from threatsync.api.dependencies import close_feed_manager
from threatsync.api.routers import feeds
from threatsync.api.schemas import error_response
from threatsync.config import settings
from threatsync.errors import (
    ConfigurationError,
    DownstreamAPIError,
    ThreatSyncError,
)
from threatsync.metrics import REQUEST_COUNT, REQUEST_DURATION

logger = logging.getLogger(__name__)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to collect Prometheus metrics and stamp the request start time."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.time()
        request.state.start_time = start_time

        response = await call_next(request)

        duration = time.time() - start_time
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        method = request.method
        status_code = str(response.status_code)

        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status_code).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration)

        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan context manager."""
    # Startup
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting ThreatSync API")

    yield

    # Shutdown
    logger.info("Shutting down ThreatSync API")
    await close_feed_manager()


def _start_time(request: Request) -> float | None:
    return getattr(request.state, "start_time", None)


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="ThreatSync API",
        description="Threat intelligence feed synchronizer for Cloudflare Gateway lists",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_hosts if not settings.debug else ["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

    # Prometheus metrics
    app.add_middleware(PrometheusMiddleware)

    # Exception handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(
                exc.status_code, str(exc.detail), start_time=_start_time(request)
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_response(
                400,
                "Invalid request body",
                details=[str(err.get("msg")) for err in exc.errors()],
                start_time=_start_time(request),
            ),
        )

    @app.exception_handler(ThreatSyncError)
    async def threatsync_exception_handler(
        request: Request, exc: ThreatSyncError
    ) -> JSONResponse:
        """Map domain errors to status codes inside the response envelope."""
        details = None
        if isinstance(exc, ConfigurationError):
            status_code = status.HTTP_400_BAD_REQUEST
            details = exc.errors or None
        elif isinstance(exc, DownstreamAPIError):
            status_code = status.HTTP_502_BAD_GATEWAY
        else:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        message = exc.args[0] if exc.args else str(exc)
        return JSONResponse(
            status_code=status_code,
            content=error_response(
                status_code, str(message), details=details, start_time=_start_time(request)
            ),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle general exceptions without exposing internals."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_response(
                500, "Internal server error", start_time=_start_time(request)
            ),
        )

    # Metrics endpoint
    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(
            content=generate_latest(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    app.include_router(feeds.router, prefix=settings.api_prefix)

    return app


# Create app instance
app = create_app()
