"""
Main FastAPI application entry point.

This module wires the query pipeline together and sets up routes,
exception handlers and lifecycle events.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import healthz_router, metrics_router, query_router
from .config import Settings, get_settings
from .core.cache import QueryCache
from .core.exceptions import LogQueryException
from .core.executor import QueryExecutor
from .core.fetcher import FetchEngine
from .core.gate import AdmissionGate
from .core.health import HealthChecker
from .core.metrics import MetricsCollector
from .core.normalizer import ResponseNormalizer
from .core.transport import AiohttpTransport, Transport


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    # Silence aiohttp access logs
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_lifespan_handler(settings: Settings, transport: Optional[Transport] = None) -> Any:
    """
    Create a lifespan handler with access to settings.

    When ``transport`` is given it is used as-is and never started or
    stopped here; otherwise an aiohttp transport is owned by the app.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger = structlog.get_logger(__name__)
        logger.info("Starting LogQuery service", version=app.version, site=settings.remote.site)

        metrics_collector = MetricsCollector()
        app.state.metrics = metrics_collector

        owned_transport: Optional[AiohttpTransport] = None
        http = transport
        if http is None:
            owned_transport = AiohttpTransport(timeout_seconds=settings.remote.timeout_seconds)
            await owned_transport.start()
            http = owned_transport

        gate = AdmissionGate(capacity=settings.fetch.max_concurrent_requests)
        cache = QueryCache()
        engine = FetchEngine(
            settings.remote,
            settings.fetch,
            http,
            gate,
            normalizer=ResponseNormalizer(),
            metrics=metrics_collector,
        )
        app.state.gate = gate
        app.state.cache = cache
        app.state.executor = QueryExecutor(
            engine,
            cache,
            settings.fetch,
            settings.cache,
            metrics=metrics_collector,
        )
        app.state.health_checker = HealthChecker(settings.remote, http, gate)

        if not settings.remote.has_credentials:
            logger.warning("API credentials not configured; queries will fail until they are set")

        try:
            logger.info("LogQuery service started successfully")
            yield
        finally:
            logger.info("Shutting down LogQuery service")
            if owned_transport is not None:
                await owned_transport.stop()
            cache.clear()
            logger.info("LogQuery service shutdown complete")

    return lifespan


async def logquery_exception_handler(request: Request, exc: LogQueryException) -> JSONResponse:
    """Handle custom LogQuery exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "LogQuery exception occurred",
        error=str(exc),
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
    )

    headers = {}
    if exc.status_code == 429 and exc.details.get("retry_after"):
        headers["Retry-After"] = str(exc.details["retry_after"])

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": str(exc),
            "details": exc.details,
        },
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "Unexpected exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )


def create_app(transport: Optional[Transport] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    ``transport`` and ``settings`` can be injected, which is how the tests
    run the whole pipeline against a scripted remote API.
    """
    settings = settings or get_settings()

    configure_logging(settings.log_level)

    app = FastAPI(
        title="LogQuery",
        description="Log search query service for dashboards",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=create_lifespan_handler(settings, transport),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LogQueryException, logquery_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(query_router, prefix="/v1", tags=["query"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(healthz_router, tags=["health"])

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, str]:
        """Root endpoint with service information."""
        return {
            "service": "LogQuery",
            "version": app.version,
            "description": "Log search query service for dashboards",
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "logquery.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )
