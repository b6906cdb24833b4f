"""Document models for listening progress.

One document per user holds everything: root counters, the last folder and
track bookmarks, per-language/per-level rollups, per-file progress and the
day-bucketed activity ledger.

Storage: a single Cassandra row per user with the document serialized as
JSON and a version counter for compare-and-swap writes.
"""

from datetime import UTC, date, datetime

from pydantic import BaseModel, Field


UNKNOWN_SEGMENT = "Unknown"

# Completion threshold: 90% listened = complete (files and whole languages)
COMPLETION_THRESHOLD = 90


def reaches_completion(current_time: float, duration: float) -> bool:
    """Whether a playback position counts the file as listened through."""
    return current_time * 100 >= duration * COMPLETION_THRESHOLD


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def username_from_email(email: str | None) -> str | None:
    """Local part of an email address, used as display name."""
    if not email:
        return None
    return email.split("@")[0]


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Aggregate document per user
# version is bumped on every write; updates are conditional on it (LWT)
USER_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.user_progress (
    user_id TEXT PRIMARY KEY,
    document TEXT,
    version INT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

PROGRESS_TABLES_CQL = [
    USER_PROGRESS_TABLE_CQL,
]


# ==============================================================================
# Document Entities
# ==============================================================================


class PathSegment(BaseModel):
    """One folder in a navigation path (id is None for the library root)."""

    id: str | None = None
    name: str


class LastTrack(BaseModel):
    """Resume bookmark for the last played file."""

    file_id: str
    file_name: str
    current_time: float = 0
    language: str = UNKNOWN_SEGMENT
    level: str = UNKNOWN_SEGMENT


class AudioFileProgress(BaseModel):
    """Playback progress of a single audio file.

    Attributes:
        current_time: Last reported position in seconds
        duration: File duration in seconds
        completed: Reached the completion threshold at least once
        total_play_time: Accumulated listening time for this file
    """

    file_id: str
    file_name: str
    current_time: float = 0
    duration: float = 0
    completed: bool = False
    last_played_at: datetime | None = None
    language: str = UNKNOWN_SEGMENT
    level: str = UNKNOWN_SEGMENT
    total_play_time: float = 0


class LevelProgress(BaseModel):
    """Rollup for one level inside a language."""

    level: str
    total_files: int = 0
    completed_files: int = 0
    total_listening_time: float = 0
    last_accessed_at: datetime | None = None


class LanguageProgress(BaseModel):
    """Rollup for one language with its levels."""

    language: str
    total_files: int = 0
    completed_files: int = 0
    total_listening_time: float = 0
    current_level: str = UNKNOWN_SEGMENT
    last_accessed_at: datetime | None = None
    levels_progress: dict[str, LevelProgress] = Field(default_factory=dict)


class DailyActivity(BaseModel):
    """Listening done on one UTC day."""

    day: date
    listening_time: float = 0
    files_completed: int = 0


class UserProgressAggregate(BaseModel):
    """Root progress document of a user."""

    user_id: str
    username: str | None = None
    email: str | None = None
    total_listening_time: float = 0
    total_files_completed: int = 0
    languages_started: list[str] = Field(default_factory=list)
    last_folder_path: list[PathSegment] = Field(default_factory=list)
    last_track: LastTrack | None = None
    languages_progress: dict[str, LanguageProgress] = Field(default_factory=dict)
    audio_progress: dict[str, AudioFileProgress] = Field(default_factory=dict)
    daily_activity: dict[str, DailyActivity] = Field(default_factory=dict)
    applied_event_keys: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def new(
        cls,
        user_id: str,
        root_name: str,
        now: datetime,
        email: str | None = None,
    ) -> "UserProgressAggregate":
        """Fresh document: zeroed counters, bookmark on the library root."""
        return cls(
            user_id=user_id,
            username=username_from_email(email),
            email=email,
            last_folder_path=[PathSegment(id=None, name=root_name)],
            created_at=now,
            updated_at=now,
        )

    def __repr__(self) -> str:
        return (
            f"<UserProgressAggregate user={self.user_id} "
            f"completed={self.total_files_completed} "
            f"listened={self.total_listening_time}s>"
        )
