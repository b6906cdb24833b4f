"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter, Request

from langplayer.config import get_settings
from langplayer.core.database import AsyncCassandraConnection


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe - checks if the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request) -> dict[str, Any]:
    """Readiness probe - ready once the progress aggregator is wired up."""
    settings = get_settings()
    state = request.app.state
    writer = getattr(state, "progress_writer", None)
    return {
        "status": "ready" if getattr(state, "progress_aggregator", None) else "degraded",
        "environment": settings.environment,
        "debug": settings.debug,
        "store_backend": getattr(state, "progress_store_backend", None),
        "cassandra_connected": AsyncCassandraConnection.is_connected(),
        "cache_enabled": getattr(state, "redis", None) is not None,
        "writer": writer.get_stats() if writer else None,
    }


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
