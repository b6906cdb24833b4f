"""Listening progress aggregation.

Turns player telemetry into mutation sets on the user's progress document:
- Per-file position, duration and completion (90% rule)
- Language and level rollups with exactly-once completion counting
- Root counters and the day-bucketed activity ledger
- Folder and track bookmarks for resuming
- File-count reconciliation from folder listings
"""

import asyncio
import math
import weakref
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

import structlog

from .cache import ProgressSnapshotCache
from .exceptions import (
    ConcurrentUpdateError,
    CorruptDocumentError,
    InvalidInputError,
    NotInitializedError,
    ProgressError,
    StoreUnavailableError,
)
from .models import (
    AudioFileProgress,
    DailyActivity,
    LanguageProgress,
    LastTrack,
    LevelProgress,
    PathSegment,
    UserProgressAggregate,
    ensure_utc_aware,
    reaches_completion,
)
from .mutations import FieldPath, MutationSet, apply_mutations
from .paths import resolve
from .schemas import ProjectedStats
from .stats import compute_stats
from .store import ProgressStore


__all__ = [
    "ConcurrentUpdateError",
    "CorruptDocumentError",
    "InvalidInputError",
    "NotInitializedError",
    "ProgressAggregator",
    "ProgressError",
    "StoreUnavailableError",
]

logger = structlog.get_logger(__name__)

# Idempotency keys remembered per user
MAX_APPLIED_EVENT_KEYS = 50

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def _event_key(file_id: str, idempotency_key: str | None) -> str | None:
    """Replay key, scoped to the file the client event was about."""
    if not idempotency_key:
        return None
    return f"{file_id}:{idempotency_key}"


def _validate_path(path: Sequence[PathSegment]) -> None:
    if not path:
        raise InvalidInputError("Path must start with the library root segment")


class ProgressAggregator:
    """Applies playback and navigation events to progress documents.

    Writes for one user are serialized by an in-process lock and committed
    with compare-and-swap on the document version, so concurrent tabs or
    devices cannot both observe a file as incomplete and count it twice. On a
    version conflict the mutation set is rebuilt from a fresh read.
    """

    def __init__(
        self,
        store: ProgressStore,
        clock: Clock = utc_now,
        cache: ProgressSnapshotCache | None = None,
        max_write_attempts: int = 3,
        library_root_name: str = "Pimsleur",
    ):
        self.store = store
        self.cache = cache
        self.max_write_attempts = max_write_attempts
        self.library_root_name = library_root_name
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _now(self) -> datetime:
        return ensure_utc_aware(self._clock())

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    # ==========================================================================
    # Document lifecycle and reads
    # ==========================================================================

    async def initialize(
        self, user_id: str, email: str | None = None
    ) -> UserProgressAggregate:
        """Create the user's document unless it already exists.

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        existing = await self.store.get(user_id)
        if existing is not None:
            return existing.aggregate

        aggregate = UserProgressAggregate.new(
            user_id=user_id,
            root_name=self.library_root_name,
            now=self._now(),
            email=email,
        )
        if await self.store.create_if_absent(user_id, aggregate):
            logger.info("user_progress_initialized", user_id=user_id)
            return aggregate

        # Lost the race to another session; theirs is the document
        stored = await self.store.get(user_id)
        if stored is None:
            raise StoreUnavailableError("Progress document vanished after create")
        return stored.aggregate

    async def get_progress(self, user_id: str) -> UserProgressAggregate:
        """Load the user's document, from the snapshot cache when possible.

        Raises:
            NotInitializedError: If the user has no document
        """
        if self.cache is not None:
            cached = await self.cache.get(user_id)
            if cached is not None:
                return cached

        stored = await self.store.get(user_id)
        if stored is None:
            raise NotInitializedError

        # A write that committed meanwhile has already stored a newer snapshot
        if self.cache is not None:
            await self.cache.set(user_id, stored.aggregate, only_if_absent=True)
        return stored.aggregate

    async def get_stats(self, user_id: str) -> ProjectedStats:
        """Dashboard statistics for the user."""
        aggregate = await self.get_progress(user_id)
        return compute_stats(aggregate, today=self._now().date())

    # ==========================================================================
    # Write path
    # ==========================================================================

    async def _write(
        self,
        user_id: str,
        build: Callable[[UserProgressAggregate, datetime], MutationSet | None],
        operation: str,
    ) -> UserProgressAggregate:
        """Read, build mutations, and commit them conditionally on the version.

        ``build`` returns None (or an empty set) when there is nothing to do.
        Returns the document as it looks after the write.
        """
        async with self._user_lock(user_id):
            for attempt in range(1, self.max_write_attempts + 1):
                stored = await self.store.get(user_id)
                if stored is None:
                    raise NotInitializedError

                now = self._now()
                mutations = build(stored.aggregate, now)
                if not mutations:
                    return stored.aggregate
                mutations.set(FieldPath.root("updated_at"), now)

                if await self.store.apply(user_id, mutations, stored.version):
                    updated = apply_mutations(stored.aggregate, mutations)
                    if self.cache is not None:
                        await self.cache.set(user_id, updated)
                    logger.debug(
                        "progress_mutations_applied",
                        operation=operation,
                        user_id=user_id,
                        version=stored.version + 1,
                        mutations=len(mutations),
                    )
                    return updated

                logger.warning(
                    "progress_write_conflict",
                    operation=operation,
                    user_id=user_id,
                    attempt=attempt,
                    version=stored.version,
                )

        logger.error(
            "progress_write_attempts_exhausted",
            operation=operation,
            user_id=user_id,
            attempts=self.max_write_attempts,
        )
        raise ConcurrentUpdateError

    async def record_folder_visit(
        self, user_id: str, path: Sequence[PathSegment]
    ) -> None:
        """Remember the folder the user is browsing (last write wins)."""
        _validate_path(path)
        folder = [PathSegment.model_validate(segment) for segment in path]

        def build(_: UserProgressAggregate, __: datetime) -> MutationSet:
            return MutationSet().set(FieldPath.root("last_folder_path"), folder)

        await self._write(user_id, build, "folder_visit")

    async def record_playback_progress(
        self,
        user_id: str,
        file_id: str,
        file_name: str,
        current_time: float,
        duration: float,
        path: Sequence[PathSegment],
        play_time_delta: float = 0,
        idempotency_key: str | None = None,
    ) -> AudioFileProgress:
        """Apply one playback tick.

        Marks the file complete at 90% of its duration. Completion is counted
        once per file at the language, level and root scopes no matter how many
        ticks arrive past the threshold. Play time is added at every scope.

        Args:
            user_id: Owner of the progress document
            file_id: Audio file ID in the index
            file_name: Audio file name
            current_time: Playback position in seconds
            duration: File duration in seconds
            path: Folder path of the file, root segment first
            play_time_delta: Seconds listened since the previous tick
            idempotency_key: Optional client event ID; a replay is a no-op

        Returns:
            The file's progress after the update

        Raises:
            NotInitializedError: If ``initialize`` was never called for the user
            InvalidInputError: On non-positive duration or malformed input
            ConcurrentUpdateError: If every compare-and-swap attempt conflicted
        """
        if not file_id:
            raise InvalidInputError("file_id is required")
        if not math.isfinite(duration) or duration <= 0:
            raise InvalidInputError("duration must be positive")
        if not math.isfinite(current_time) or current_time < 0:
            raise InvalidInputError("current_time must be zero or positive")
        if not math.isfinite(play_time_delta) or play_time_delta < 0:
            raise InvalidInputError("play_time_delta must be zero or positive")
        _validate_path(path)

        language, level = resolve(path)
        completed = reaches_completion(current_time, duration)
        event_key = _event_key(file_id, idempotency_key)
        newly_completed = False

        def build(aggregate: UserProgressAggregate, now: datetime) -> MutationSet | None:
            nonlocal newly_completed

            if event_key and event_key in aggregate.applied_event_keys:
                logger.info(
                    "playback_progress_replayed",
                    user_id=user_id,
                    file_id=file_id,
                    idempotency_key=idempotency_key,
                )
                return None

            existing_file = aggregate.audio_progress.get(file_id)
            was_completed = existing_file.completed if existing_file else False
            completed_delta = 1 if completed and not was_completed else 0
            newly_completed = completed_delta == 1

            mutations = MutationSet()
            self._file_mutations(
                mutations, existing_file, file_id, file_name, current_time,
                duration, completed or was_completed, language, level,
                play_time_delta, now,
            )
            self._rollup_mutations(
                mutations, aggregate, language, level, play_time_delta,
                completed_delta, now,
            )

            mutations.increment(
                FieldPath.root("total_listening_time"), play_time_delta
            )
            mutations.increment(
                FieldPath.root("total_files_completed"), completed_delta
            )
            self._day_mutations(
                mutations, aggregate, now, play_time_delta, completed_delta
            )

            if event_key:
                keys = [*aggregate.applied_event_keys, event_key]
                mutations.set(
                    FieldPath.root("applied_event_keys"),
                    keys[-MAX_APPLIED_EVENT_KEYS:],
                )
            return mutations

        aggregate = await self._write(user_id, build, "playback_progress")

        if newly_completed:
            logger.info(
                "file_completed",
                user_id=user_id,
                file_id=file_id,
                language=language,
                level=level,
            )
        logger.debug(
            "playback_progress_recorded",
            user_id=user_id,
            file_id=file_id,
            current_time=current_time,
            play_time_delta=play_time_delta,
        )
        return aggregate.audio_progress[file_id]

    @staticmethod
    def _file_mutations(
        mutations: MutationSet,
        existing: AudioFileProgress | None,
        file_id: str,
        file_name: str,
        current_time: float,
        duration: float,
        completed: bool,
        language: str,
        level: str,
        play_time_delta: float,
        now: datetime,
    ) -> None:
        if existing is None:
            mutations.set(
                FieldPath.audio_file(file_id),
                AudioFileProgress(
                    file_id=file_id,
                    file_name=file_name,
                    current_time=current_time,
                    duration=duration,
                    completed=completed,
                    last_played_at=now,
                    language=language,
                    level=level,
                    total_play_time=play_time_delta,
                ),
            )
            return

        for field, value in (
            ("file_name", file_name),
            ("current_time", current_time),
            ("duration", duration),
            ("completed", completed),
            ("last_played_at", now),
            ("language", language),
            ("level", level),
        ):
            mutations.set(FieldPath.audio_file(file_id, field), value)
        mutations.increment(
            FieldPath.audio_file(file_id, "total_play_time"), play_time_delta
        )

    @staticmethod
    def _rollup_mutations(
        mutations: MutationSet,
        aggregate: UserProgressAggregate,
        language: str,
        level: str,
        play_time_delta: float,
        completed_delta: int,
        now: datetime,
    ) -> None:
        """Create-or-increment the language rollup and its level rollup."""
        new_level = LevelProgress(
            level=level,
            total_files=1,
            completed_files=completed_delta,
            total_listening_time=play_time_delta,
            last_accessed_at=now,
        )

        existing_language = aggregate.languages_progress.get(language)
        if existing_language is None:
            mutations.set(
                FieldPath.language(language),
                LanguageProgress(
                    language=language,
                    total_files=1,
                    completed_files=completed_delta,
                    total_listening_time=play_time_delta,
                    current_level=level,
                    last_accessed_at=now,
                    levels_progress={level: new_level},
                ),
            )
        else:
            mutations.increment(
                FieldPath.language(language, "total_listening_time"), play_time_delta
            )
            mutations.increment(
                FieldPath.language(language, "completed_files"), completed_delta
            )
            mutations.set(FieldPath.language(language, "current_level"), level)
            mutations.set(FieldPath.language(language, "last_accessed_at"), now)

            if level not in existing_language.levels_progress:
                mutations.set(FieldPath.level(language, level), new_level)
            else:
                mutations.increment(
                    FieldPath.level(language, level, "total_listening_time"),
                    play_time_delta,
                )
                mutations.increment(
                    FieldPath.level(language, level, "completed_files"),
                    completed_delta,
                )
                mutations.set(FieldPath.level(language, level, "last_accessed_at"), now)

        if language not in aggregate.languages_started:
            mutations.set(
                FieldPath.root("languages_started"),
                [*aggregate.languages_started, language],
            )

    @staticmethod
    def _day_mutations(
        mutations: MutationSet,
        aggregate: UserProgressAggregate,
        now: datetime,
        play_time_delta: float,
        completed_delta: int,
    ) -> None:
        if not play_time_delta and not completed_delta:
            return
        day_key = now.date().isoformat()
        if day_key not in aggregate.daily_activity:
            mutations.set(
                FieldPath.day(day_key),
                DailyActivity(
                    day=now.date(),
                    listening_time=play_time_delta,
                    files_completed=completed_delta,
                ),
            )
            return
        mutations.increment(FieldPath.day(day_key, "listening_time"), play_time_delta)
        mutations.increment(FieldPath.day(day_key, "files_completed"), completed_delta)

    # ==========================================================================
    # Best-effort writes
    # ==========================================================================

    async def record_last_position(
        self,
        user_id: str,
        file_id: str,
        file_name: str,
        current_time: float,
        path: Sequence[PathSegment],
    ) -> None:
        """Save the resume bookmark only; counters are untouched.

        Best effort: failures are logged and swallowed.
        """

        def build(_: UserProgressAggregate, __: datetime) -> MutationSet:
            language, level = resolve(path)
            bookmark = LastTrack(
                file_id=file_id,
                file_name=file_name,
                current_time=current_time,
                language=language,
                level=level,
            )
            return MutationSet().set(FieldPath.root("last_track"), bookmark)

        try:
            await self._write(user_id, build, "last_position")
        except ProgressError as e:
            logger.warning(
                "last_position_write_failed",
                user_id=user_id,
                file_id=file_id,
                code=e.code,
                error=e.message,
            )
        except Exception:
            logger.exception(
                "last_position_write_error", user_id=user_id, file_id=file_id
            )

    async def record_file_count(
        self,
        user_id: str,
        language: str,
        level: str,
        total_files: int,
    ) -> None:
        """Reconcile a level's file count from a folder listing.

        Creates missing language/level rollups with zero completion counters,
        updates the level total only when it changed and keeps the language
        total equal to the sum of its levels. Completion counters are never
        touched. Best effort: failures are logged and swallowed.
        """
        if total_files < 0:
            logger.warning(
                "file_count_rejected", user_id=user_id, total_files=total_files
            )
            return

        def build(aggregate: UserProgressAggregate, now: datetime) -> MutationSet:
            mutations = MutationSet()
            new_level = LevelProgress(
                level=level, total_files=total_files, last_accessed_at=now
            )
            existing_language = aggregate.languages_progress.get(language)

            if existing_language is None:
                mutations.set(
                    FieldPath.language(language),
                    LanguageProgress(
                        language=language,
                        total_files=total_files,
                        current_level=level,
                        last_accessed_at=now,
                        levels_progress={level: new_level},
                    ),
                )
                if language not in aggregate.languages_started:
                    mutations.set(
                        FieldPath.root("languages_started"),
                        [*aggregate.languages_started, language],
                    )
                return mutations

            mutations.set(FieldPath.language(language, "last_accessed_at"), now)
            mutations.set(FieldPath.language(language, "current_level"), level)

            existing_level = existing_language.levels_progress.get(level)
            if existing_level is None:
                mutations.set(FieldPath.level(language, level), new_level)
            else:
                mutations.set(FieldPath.level(language, level, "last_accessed_at"), now)
                if existing_level.total_files != total_files:
                    mutations.set(
                        FieldPath.level(language, level, "total_files"), total_files
                    )

            level_totals = {
                name: entry.total_files
                for name, entry in existing_language.levels_progress.items()
            }
            level_totals[level] = total_files
            language_total = sum(level_totals.values())
            if language_total != existing_language.total_files:
                mutations.set(
                    FieldPath.language(language, "total_files"), language_total
                )
            return mutations

        try:
            await self._write(user_id, build, "file_count")
        except NotInitializedError:
            logger.info("file_count_skipped_not_initialized", user_id=user_id)
        except ProgressError as e:
            logger.warning(
                "file_count_write_failed",
                user_id=user_id,
                language=language,
                level=level,
                code=e.code,
                error=e.message,
            )
        except Exception:
            logger.exception(
                "file_count_write_error",
                user_id=user_id,
                language=language,
                level=level,
            )
