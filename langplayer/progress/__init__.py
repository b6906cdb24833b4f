"""Listening progress tracking module.

Provides:
- Playback progress with exactly-once completion counting (90% rule)
- Language and level rollups resolved from the folder path
- Resume bookmarks (last folder, last track)
- File-count reconciliation from folder listings
- Dashboard statistics with weekly activity and streaks
"""

from .models import (
    PROGRESS_TABLES_CQL,
    AudioFileProgress,
    LanguageProgress,
    LevelProgress,
    PathSegment,
    UserProgressAggregate,
)
from .service import ProgressAggregator


__all__ = [
    "PROGRESS_TABLES_CQL",
    "AudioFileProgress",
    "LanguageProgress",
    "LevelProgress",
    "PathSegment",
    "ProgressAggregator",
    "UserProgressAggregate",
]
