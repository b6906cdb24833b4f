"""Listening progress API endpoints.

Provides routes for:
- Progress document initialization and reads
- Playback progress updates (throttled from the player)
- Resume bookmarks, including unload beacons
- Folder visits and file-count reconciliation
- Dashboard statistics and per-file/per-language display values
"""

from fastapi import APIRouter, status

from langplayer.auth.dependencies import CurrentUser
from langplayer.core.context import get_request_id

from . import stats
from .dependencies import (
    ProgressAggregatorDep,
    ProgressWriterDep,
    handle_progress_error,
)
from .models import UserProgressAggregate
from .schemas import (
    AudioFileProgressResponse,
    FileCountRequest,
    FolderVisitRequest,
    InitializeRequest,
    LanguageProgressResponse,
    LastFolderResponse,
    LastPositionRequest,
    LastTrackResponse,
    MessageResponse,
    PlaybackProgressRequest,
    ProjectedStats,
)
from .service import ProgressError
from .writer import PlaybackFlush


router = APIRouter(prefix="/v1/progress", tags=["progress"])


# ==============================================================================
# Document Endpoints
# ==============================================================================


@router.post(
    "/init",
    response_model=UserProgressAggregate,
    summary="Initialize progress tracking",
)
async def initialize_progress(
    aggregator: ProgressAggregatorDep,
    user: CurrentUser,
    data: InitializeRequest | None = None,
) -> UserProgressAggregate:
    """Create the progress document on first sign-in.

    Calling it again returns the existing document unchanged.
    """
    email = data.email if data and data.email else user.email
    try:
        return await aggregator.initialize(user.id, email=email)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.get(
    "",
    response_model=UserProgressAggregate,
    summary="Get progress document",
)
async def get_progress(
    aggregator: ProgressAggregatorDep,
    user: CurrentUser,
) -> UserProgressAggregate:
    try:
        return await aggregator.get_progress(user.id)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.get(
    "/stats",
    response_model=ProjectedStats,
    summary="Get dashboard statistics",
)
async def get_stats(
    aggregator: ProgressAggregatorDep,
    user: CurrentUser,
) -> ProjectedStats:
    """Totals, streak, last seven days and per-language breakdown."""
    try:
        return await aggregator.get_stats(user.id)
    except ProgressError as e:
        raise handle_progress_error(e) from e


# ==============================================================================
# Write Endpoints
# ==============================================================================


@router.put(
    "/folder",
    response_model=MessageResponse,
    summary="Record folder visit",
)
async def record_folder_visit(
    data: FolderVisitRequest,
    aggregator: ProgressAggregatorDep,
    user: CurrentUser,
) -> MessageResponse:
    try:
        await aggregator.record_folder_visit(user.id, data.path)
    except ProgressError as e:
        raise handle_progress_error(e) from e
    return MessageResponse(message="Folder recorded")


@router.put(
    "/playback",
    response_model=AudioFileProgressResponse,
    summary="Update playback progress",
)
async def update_playback_progress(
    data: PlaybackProgressRequest,
    aggregator: ProgressAggregatorDep,
    user: CurrentUser,
) -> AudioFileProgressResponse:
    """Apply a playback tick and move the resume bookmark to this file.

    Called from the player every few seconds during playback.
    Marks the file complete at 90% of its duration.
    """
    try:
        progress = await aggregator.record_playback_progress(
            user_id=user.id,
            file_id=data.file_id,
            file_name=data.file_name,
            current_time=data.current_time,
            duration=data.duration,
            path=data.path,
            play_time_delta=data.play_time_delta,
            idempotency_key=data.idempotency_key,
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    await aggregator.record_last_position(
        user_id=user.id,
        file_id=data.file_id,
        file_name=data.file_name,
        current_time=data.current_time,
        path=data.path,
    )

    return AudioFileProgressResponse(
        file_id=progress.file_id,
        completed=progress.completed,
        progress_percentage=stats.audio_progress_percent_of(progress),
        current_time=progress.current_time,
        duration=progress.duration,
    )


@router.post(
    "/playback/beacon",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Flush playback on unload",
)
async def flush_playback_beacon(
    data: PlaybackProgressRequest,
    writer: ProgressWriterDep,
    user: CurrentUser,
) -> MessageResponse:
    """Accept a final flush sent with ``navigator.sendBeacon``.

    The update is applied in the background; the response never waits for it.
    """
    queued = writer.submit(
        PlaybackFlush(
            user_id=user.id,
            file_id=data.file_id,
            file_name=data.file_name,
            current_time=data.current_time,
            duration=data.duration,
            path=data.path,
            play_time_delta=data.play_time_delta,
            idempotency_key=data.idempotency_key,
            request_id=get_request_id(),
        )
    )
    return MessageResponse(
        message="Flush queued" if queued else "Flush dropped",
        success=queued,
    )


@router.put(
    "/position",
    response_model=MessageResponse,
    summary="Save resume position",
)
async def record_last_position(
    data: LastPositionRequest,
    aggregator: ProgressAggregatorDep,
    user: CurrentUser,
) -> MessageResponse:
    """Bookmark-only write used on pause. Never fails the request."""
    await aggregator.record_last_position(
        user_id=user.id,
        file_id=data.file_id,
        file_name=data.file_name,
        current_time=data.current_time,
        path=data.path,
    )
    return MessageResponse(message="Position saved")


@router.put(
    "/file-count",
    response_model=MessageResponse,
    summary="Reconcile level file count",
)
async def record_file_count(
    data: FileCountRequest,
    aggregator: ProgressAggregatorDep,
    user: CurrentUser,
) -> MessageResponse:
    """Report how many audio files a level folder listing contains."""
    await aggregator.record_file_count(
        user_id=user.id,
        language=data.language,
        level=data.level,
        total_files=data.total_files,
    )
    return MessageResponse(message="File count recorded")


# ==============================================================================
# Display Endpoints
# ==============================================================================


@router.get(
    "/last-track",
    response_model=LastTrackResponse,
    summary="Get resume bookmark",
)
async def get_last_track(
    aggregator: ProgressAggregatorDep,
    user: CurrentUser,
) -> LastTrackResponse:
    try:
        aggregate = await aggregator.get_progress(user.id)
    except ProgressError as e:
        raise handle_progress_error(e) from e
    return LastTrackResponse(last_track=stats.last_track_info(aggregate))


@router.get(
    "/last-folder",
    response_model=LastFolderResponse,
    summary="Get folder to reopen",
)
async def get_last_folder(
    aggregator: ProgressAggregatorDep,
    user: CurrentUser,
) -> LastFolderResponse:
    try:
        aggregate = await aggregator.get_progress(user.id)
    except ProgressError as e:
        raise handle_progress_error(e) from e
    return LastFolderResponse(
        path=stats.last_folder_path(aggregate, aggregator.library_root_name)
    )


@router.get(
    "/files/{file_id}",
    response_model=AudioFileProgressResponse,
    summary="Get file progress",
)
async def get_file_progress(
    file_id: str,
    aggregator: ProgressAggregatorDep,
    user: CurrentUser,
) -> AudioFileProgressResponse:
    """Progress badge for one file; zero for files never played."""
    try:
        aggregate = await aggregator.get_progress(user.id)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    progress = aggregate.audio_progress.get(file_id)
    return AudioFileProgressResponse(
        file_id=file_id,
        completed=stats.is_file_completed(aggregate, file_id),
        progress_percentage=stats.audio_progress_percent(aggregate, file_id),
        current_time=progress.current_time if progress else 0,
        duration=progress.duration if progress else 0,
    )


@router.get(
    "/languages/{language}",
    response_model=LanguageProgressResponse,
    summary="Get language progress",
)
async def get_language_progress(
    language: str,
    aggregator: ProgressAggregatorDep,
    user: CurrentUser,
) -> LanguageProgressResponse:
    try:
        aggregate = await aggregator.get_progress(user.id)
    except ProgressError as e:
        raise handle_progress_error(e) from e
    return LanguageProgressResponse(
        language=language,
        progress_percentage=stats.language_progress_percent(aggregate, language),
    )
