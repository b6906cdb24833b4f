"""Statistics and display getters derived from a progress document.

Everything here is pure: it reads an already loaded aggregate and never
touches storage, so the dashboard can recompute on every render.
"""

from datetime import date, timedelta

from .models import (
    COMPLETION_THRESHOLD,
    AudioFileProgress,
    LastTrack,
    PathSegment,
    UserProgressAggregate,
)
from .schemas import DailyProgressPoint, LanguageBreakdown, ProjectedStats


SECONDS_PER_HOUR = 3600
WEEK_DAYS = 7


def _percentage(completed: int | float, total: int | float) -> float:
    if not total:
        return 0.0
    return completed * 100 / total


def compute_stats(aggregate: UserProgressAggregate, today: date) -> ProjectedStats:
    """Project dashboard statistics.

    A language counts as completed at the same 90% threshold used for files.
    Weekly series and streak come from the day-bucketed activity ledger; days
    without a bucket are zero.
    """
    breakdown = []
    for progress in aggregate.languages_progress.values():
        breakdown.append(
            LanguageBreakdown(
                language=progress.language,
                completed_files=progress.completed_files,
                total_files=progress.total_files,
                listening_time=progress.total_listening_time,
                progress_percentage=min(
                    _percentage(progress.completed_files, progress.total_files), 100.0
                ),
                count_mismatch=progress.completed_files > progress.total_files,
            )
        )

    completed_languages = sum(
        1
        for lang in breakdown
        if lang.progress_percentage >= COMPLETION_THRESHOLD
    )

    return ProjectedStats(
        total_languages=len(breakdown),
        completed_languages=completed_languages,
        total_listening_hours=aggregate.total_listening_time / SECONDS_PER_HOUR,
        current_streak=current_streak(aggregate, today),
        weekly_progress=weekly_progress(aggregate, today),
        language_breakdown=breakdown,
    )


def weekly_progress(
    aggregate: UserProgressAggregate, today: date
) -> list[DailyProgressPoint]:
    """Seven daily points, oldest first, ending with ``today``."""
    points = []
    for offset in range(WEEK_DAYS - 1, -1, -1):
        day = today - timedelta(days=offset)
        bucket = aggregate.daily_activity.get(day.isoformat())
        if bucket is None:
            points.append(DailyProgressPoint(date=day))
        else:
            points.append(
                DailyProgressPoint(
                    date=day,
                    listening_time=bucket.listening_time,
                    files_completed=bucket.files_completed,
                )
            )
    return points


def _listened_on(aggregate: UserProgressAggregate, day: date) -> bool:
    bucket = aggregate.daily_activity.get(day.isoformat())
    return bucket is not None and bucket.listening_time > 0


def current_streak(aggregate: UserProgressAggregate, today: date) -> int:
    """Consecutive listening days up to today.

    A streak still counts through yesterday when nothing was played today yet.
    """
    day = today if _listened_on(aggregate, today) else today - timedelta(days=1)
    streak = 0
    while _listened_on(aggregate, day):
        streak += 1
        day -= timedelta(days=1)
    return streak


# ==============================================================================
# Display getters
# ==============================================================================


def last_track_info(aggregate: UserProgressAggregate | None) -> LastTrack | None:
    if aggregate is None:
        return None
    return aggregate.last_track


def last_folder_path(
    aggregate: UserProgressAggregate | None, root_name: str
) -> list[PathSegment]:
    """Folder to reopen, the library root when nothing was visited."""
    if aggregate is None or not aggregate.last_folder_path:
        return [PathSegment(id=None, name=root_name)]
    return aggregate.last_folder_path


def audio_progress_percent(aggregate: UserProgressAggregate | None, file_id: str) -> float:
    if aggregate is None:
        return 0.0
    progress = aggregate.audio_progress.get(file_id)
    if progress is None:
        return 0.0
    return audio_progress_percent_of(progress)


def audio_progress_percent_of(progress: AudioFileProgress) -> float:
    """Playback position as a percentage, capped at 100."""
    return min(_percentage(progress.current_time, progress.duration), 100.0)


def is_file_completed(aggregate: UserProgressAggregate | None, file_id: str) -> bool:
    if aggregate is None:
        return False
    progress = aggregate.audio_progress.get(file_id)
    return progress is not None and progress.completed


def language_progress_percent(
    aggregate: UserProgressAggregate | None, language: str
) -> float:
    if aggregate is None:
        return 0.0
    progress = aggregate.languages_progress.get(language)
    if progress is None:
        return 0.0
    return min(_percentage(progress.completed_files, progress.total_files), 100.0)
