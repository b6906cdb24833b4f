"""Tests for statistics projection and display getters."""

from datetime import UTC, date, datetime, timedelta

import pytest

from langplayer.progress.models import (
    AudioFileProgress,
    DailyActivity,
    LanguageProgress,
    LastTrack,
    PathSegment,
    UserProgressAggregate,
)
from langplayer.progress.stats import (
    audio_progress_percent,
    compute_stats,
    current_streak,
    is_file_completed,
    language_progress_percent,
    last_folder_path,
    last_track_info,
    weekly_progress,
)


TODAY = date(2026, 3, 2)


def _doc(**kwargs) -> UserProgressAggregate:
    doc = UserProgressAggregate.new(
        user_id="u1", root_name="Pimsleur", now=datetime(2026, 1, 1, tzinfo=UTC)
    )
    return doc.model_copy(update=kwargs)


def _days(*entries: tuple[int, float]) -> dict[str, DailyActivity]:
    """Ledger from (days before TODAY, listening seconds) pairs."""
    ledger = {}
    for offset, seconds in entries:
        day = TODAY - timedelta(days=offset)
        ledger[day.isoformat()] = DailyActivity(day=day, listening_time=seconds)
    return ledger


class TestComputeStats:
    """Tests for compute_stats."""

    def test_breakdown_and_totals(self) -> None:
        doc = _doc(
            total_listening_time=7200,
            languages_progress={
                "French": LanguageProgress(
                    language="French",
                    total_files=10,
                    completed_files=9,
                    total_listening_time=5000,
                ),
                "German": LanguageProgress(
                    language="German", total_files=4, completed_files=1
                ),
            },
        )

        stats = compute_stats(doc, TODAY)

        assert stats.total_languages == 2
        assert stats.completed_languages == 1
        assert stats.total_listening_hours == 2
        french = next(b for b in stats.language_breakdown if b.language == "French")
        assert french.progress_percentage == pytest.approx(90)
        assert french.listening_time == 5000
        assert french.count_mismatch is False

    def test_zero_total_files_is_zero_percent(self) -> None:
        doc = _doc(
            languages_progress={"French": LanguageProgress(language="French")}
        )

        stats = compute_stats(doc, TODAY)

        assert stats.language_breakdown[0].progress_percentage == 0
        assert stats.completed_languages == 0

    def test_more_completed_than_listed_is_flagged(self) -> None:
        """Files removed from the listing after completion: capped and flagged."""
        doc = _doc(
            languages_progress={
                "French": LanguageProgress(
                    language="French", total_files=3, completed_files=5
                )
            }
        )

        breakdown = compute_stats(doc, TODAY).language_breakdown[0]

        assert breakdown.progress_percentage == 100
        assert breakdown.count_mismatch is True

    def test_empty_document(self) -> None:
        stats = compute_stats(_doc(), TODAY)

        assert stats.total_languages == 0
        assert stats.total_listening_hours == 0
        assert stats.current_streak == 0
        assert len(stats.weekly_progress) == 7
        assert all(point.listening_time == 0 for point in stats.weekly_progress)


class TestWeeklyProgress:
    """Tests for the seven-day series."""

    def test_oldest_first_ending_today(self) -> None:
        doc = _doc(daily_activity=_days((0, 60), (6, 30), (7, 999)))

        points = weekly_progress(doc, TODAY)

        assert [p.date for p in points] == [
            TODAY - timedelta(days=offset) for offset in range(6, -1, -1)
        ]
        assert points[0].listening_time == 30
        assert points[-1].listening_time == 60
        assert sum(p.listening_time for p in points) == 90


class TestCurrentStreak:
    """Tests for the listening streak."""

    @pytest.mark.parametrize(
        "entries,expected",
        [
            ((), 0),
            (((0, 10),), 1),
            (((0, 10), (1, 10), (2, 10)), 3),
            (((1, 10), (2, 10)), 2),
            (((0, 10), (2, 10)), 1),
            (((2, 10), (3, 10)), 0),
            (((0, 0), (1, 10)), 1),
        ],
    )
    def test_streak(self, entries: tuple, expected: int) -> None:
        doc = _doc(daily_activity=_days(*entries))
        assert current_streak(doc, TODAY) == expected


class TestDisplayGetters:
    """Tests for the per-item getters used by the file list and player."""

    @pytest.fixture
    def doc(self) -> UserProgressAggregate:
        return _doc(
            last_track=LastTrack(file_id="a", file_name="a.mp3", current_time=12),
            last_folder_path=[
                PathSegment(id=None, name="Pimsleur"),
                PathSegment(id="fr", name="French"),
            ],
            audio_progress={
                "a": AudioFileProgress(
                    file_id="a", file_name="a.mp3", current_time=25, duration=100
                ),
                "b": AudioFileProgress(
                    file_id="b",
                    file_name="b.mp3",
                    current_time=100,
                    duration=100,
                    completed=True,
                ),
            },
            languages_progress={
                "French": LanguageProgress(
                    language="French", total_files=4, completed_files=1
                )
            },
        )

    def test_values(self, doc: UserProgressAggregate) -> None:
        assert last_track_info(doc).file_id == "a"
        assert last_folder_path(doc, "Pimsleur")[-1].name == "French"
        assert audio_progress_percent(doc, "a") == 25
        assert is_file_completed(doc, "a") is False
        assert is_file_completed(doc, "b") is True
        assert language_progress_percent(doc, "French") == 25

    def test_defaults_for_unknown_items(self, doc: UserProgressAggregate) -> None:
        assert audio_progress_percent(doc, "missing") == 0
        assert is_file_completed(doc, "missing") is False
        assert language_progress_percent(doc, "Japanese") == 0

    def test_defaults_without_document(self) -> None:
        assert last_track_info(None) is None
        assert last_folder_path(None, "Pimsleur") == [
            PathSegment(id=None, name="Pimsleur")
        ]
        assert audio_progress_percent(None, "a") == 0
        assert is_file_completed(None, "a") is False
        assert language_progress_percent(None, "French") == 0

    def test_language_percent_capped_when_counts_disagree(self) -> None:
        doc = _doc(
            languages_progress={
                "French": LanguageProgress(
                    language="French", total_files=2, completed_files=3
                )
            }
        )
        assert language_progress_percent(doc, "French") == 100
