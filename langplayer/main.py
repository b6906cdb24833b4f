"""Langplayer Progress API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from langplayer.config import get_settings
from langplayer.core.context import get_request_id
from langplayer.core.database import init_async_cassandra, shutdown_async_cassandra
from langplayer.core.logging import configure_structlog, get_logger
from langplayer.core.middleware import RequestContextMiddleware
from langplayer.core.redis import init_redis, shutdown_redis
from langplayer.health.router import router as health_router
from langplayer.progress.cache import ProgressSnapshotCache
from langplayer.progress.router import router as progress_router
from langplayer.progress.service import ProgressAggregator
from langplayer.progress.store import (
    CassandraProgressStore,
    MemoryProgressStore,
    ProgressStore,
)
from langplayer.progress.writer import ProgressWriter


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


async def _init_store(app: FastAPI) -> ProgressStore | None:
    """Open the configured progress store, None if it cannot be reached."""
    settings = get_settings()

    if settings.uses_memory_store:
        app.state.progress_store_backend = "memory"
        logger.info("progress_store_initialized", backend="memory")
        return MemoryProgressStore()

    try:
        session = await init_async_cassandra()
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )
        return None

    app.state.cassandra_session = session
    app.state.progress_store_backend = "cassandra"
    logger.info("progress_store_initialized", backend="cassandra")
    return CassandraProgressStore(session=session, keyspace=settings.cassandra_keyspace)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    # Initialize Redis (non-critical - app works without it)
    redis_client = None
    if not settings.is_testing:
        try:
            redis_client = await init_redis()
            logger.info("redis_initialized")
        except Exception as e:
            logger.warning(
                "redis_init_skipped",
                error=str(e),
                message="Running without Redis - progress snapshots not cached",
            )
    app.state.redis = redis_client

    app.state.progress_aggregator = None
    app.state.progress_writer = None

    store = await _init_store(app)
    if store is not None:
        cache = (
            ProgressSnapshotCache(redis_client, ttl_seconds=settings.progress_cache_ttl_seconds)
            if redis_client is not None
            else None
        )
        app.state.progress_aggregator = ProgressAggregator(
            store=store,
            cache=cache,
            max_write_attempts=settings.progress_max_write_attempts,
            library_root_name=settings.library_root_name,
        )
        logger.info("progress_aggregator_initialized", cache_enabled=cache is not None)

        app.state.progress_writer = ProgressWriter(
            app.state.progress_aggregator,
            queue_size=settings.progress_writer_queue_size,
        )
        await app.state.progress_writer.start()

    yield

    # Shutdown
    logger.info("shutting_down_application")
    if app.state.progress_writer is not None:
        await app.state.progress_writer.stop()
    await shutdown_redis()
    await shutdown_async_cassandra()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # Always debug=False so ServerErrorMiddleware never renders stack traces;
    # the handlers below log details and return safe messages.
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Language audio player - listening progress API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        """Get request_id from request state or context."""
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                "message": str(exc.detail)
                if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
                or exc.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
                else "Internal server error",
                "status_code": exc.status_code,
                "request_id": request_id,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle validation errors with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "message": "Validation error",
                "status_code": 422,
                "request_id": request_id,
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler for unhandled exceptions.

        Stack traces and internal details are logged, never returned.
        """
        request_id = _get_request_id_safe(request)

        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": request_id,
            },
        )

    app.include_router(health_router)
    app.include_router(progress_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "Langplayer Progress API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
