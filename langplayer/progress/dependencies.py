"""FastAPI dependencies for progress tracking.

Provides dependency injection for:
- Progress aggregator
- Background progress writer
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .service import ProgressAggregator, ProgressError
from .writer import ProgressWriter


async def get_progress_aggregator(request: Request) -> ProgressAggregator:
    """Get progress aggregator from app state."""
    aggregator = getattr(request.app.state, "progress_aggregator", None)
    if not aggregator:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Progress service not available",
        )
    return aggregator


async def get_progress_writer(request: Request) -> ProgressWriter:
    """Get background progress writer from app state."""
    writer = getattr(request.app.state, "progress_writer", None)
    if not writer:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Progress writer not available",
        )
    return writer


# Type aliases for dependency injection
ProgressAggregatorDep = Annotated[ProgressAggregator, Depends(get_progress_aggregator)]
ProgressWriterDep = Annotated[ProgressWriter, Depends(get_progress_writer)]


def handle_progress_error(error: ProgressError) -> HTTPException:
    """Convert progress errors to HTTP exceptions.

    Args:
        error: Progress error

    Returns:
        HTTPException with appropriate status code
    """
    status_map = {
        "not_initialized": status.HTTP_404_NOT_FOUND,
        "invalid_input": status.HTTP_422_UNPROCESSABLE_ENTITY,
        "store_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
        "concurrent_update": status.HTTP_409_CONFLICT,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=error.message,
    )
