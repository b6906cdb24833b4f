"""Pydantic schemas for listening progress.

Request and response models for:
- Playback progress and bookmark updates
- Folder visits and file-count reconciliation
- Projected statistics for the dashboard
"""

from datetime import date

from pydantic import BaseModel, Field

from .models import LastTrack, PathSegment


# ==============================================================================
# Playback Schemas
# ==============================================================================


class PlaybackProgressRequest(BaseModel):
    """Progress tick sent by the player (throttled client side)."""

    file_id: str = Field(..., min_length=1, description="Audio file ID in the index")
    file_name: str = Field(..., description="Audio file name")
    current_time: float = Field(..., ge=0, description="Playback position in seconds")
    duration: float = Field(..., gt=0, description="File duration in seconds")
    path: list[PathSegment] = Field(
        ..., min_length=1, description="Folder path, root segment first"
    )
    play_time_delta: float = Field(
        0, ge=0, description="Seconds listened since the previous tick"
    )
    idempotency_key: str | None = Field(
        None, max_length=128, description="Client event ID, replays are ignored"
    )


class LastPositionRequest(BaseModel):
    """Bookmark-only update (pause, unload)."""

    file_id: str = Field(..., min_length=1)
    file_name: str
    current_time: float = Field(..., ge=0)
    path: list[PathSegment] = Field(..., min_length=1)


class FolderVisitRequest(BaseModel):
    """User navigated to a folder."""

    path: list[PathSegment] = Field(..., min_length=1)


class FileCountRequest(BaseModel):
    """Number of audio files found in a level folder listing."""

    language: str = Field(..., min_length=1)
    level: str = Field(..., min_length=1)
    total_files: int = Field(..., ge=0)


class InitializeRequest(BaseModel):
    """Optional profile data stored with a new progress document."""

    email: str | None = None


class AudioFileProgressResponse(BaseModel):
    """Progress of one file as shown next to it in the file list."""

    file_id: str
    completed: bool
    progress_percentage: float
    current_time: float = 0
    duration: float = 0


class LanguageProgressResponse(BaseModel):
    language: str
    progress_percentage: float


class LastFolderResponse(BaseModel):
    path: list[PathSegment]


class LastTrackResponse(BaseModel):
    last_track: LastTrack | None = None


# ==============================================================================
# Statistics Schemas
# ==============================================================================


class LanguageBreakdown(BaseModel):
    """Per-language rollup for the dashboard."""

    language: str
    completed_files: int
    total_files: int
    listening_time: float
    progress_percentage: float = Field(description="0-100, 0 when total_files is 0")
    count_mismatch: bool = Field(
        False, description="More files completed than the listing declares"
    )


class DailyProgressPoint(BaseModel):
    date: date
    listening_time: float = 0
    files_completed: int = 0


class ProjectedStats(BaseModel):
    """Display-ready statistics derived from a progress document."""

    total_languages: int
    completed_languages: int
    total_listening_hours: float
    current_streak: int
    weekly_progress: list[DailyProgressPoint]
    language_breakdown: list[LanguageBreakdown]


# ==============================================================================
# Generic Response
# ==============================================================================


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
    success: bool = True
