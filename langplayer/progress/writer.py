"""Fire-and-forget progress writer for unload beacons.

Browsers send a final flush with ``navigator.sendBeacon`` when a tab closes;
nobody waits for the response. The router acknowledges immediately and the
work happens here, on a background worker:
- Non-blocking submission (``asyncio.Queue.put_nowait``)
- Graceful degradation (drop + log on queue full)
- Remaining jobs are drained on shutdown
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from langplayer.core.context import RequestContext

from .exceptions import ProgressError


if TYPE_CHECKING:
    from .models import PathSegment
    from .service import ProgressAggregator


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PlaybackFlush:
    """Final playback state of a file, flushed on pause or unload."""

    user_id: str
    file_id: str
    file_name: str
    current_time: float
    duration: float
    path: list[PathSegment]
    play_time_delta: float = 0
    idempotency_key: str | None = None
    request_id: str | None = field(default=None, compare=False)


class ProgressWriter:
    """Applies queued playback flushes in the background."""

    def __init__(
        self,
        aggregator: ProgressAggregator,
        queue_size: int = 1000,
        poll_interval: float = 0.5,
    ) -> None:
        self.aggregator = aggregator
        self.queue_size = queue_size
        self.poll_interval = poll_interval

        self._queue: asyncio.Queue[PlaybackFlush] = asyncio.Queue(maxsize=queue_size)
        self._running = False
        self._worker_task: asyncio.Task | None = None

        self._jobs_submitted = 0
        self._jobs_dropped = 0
        self._jobs_processed = 0
        self._jobs_failed = 0

    def submit(self, job: PlaybackFlush) -> bool:
        """Queue a flush without waiting.

        Returns:
            True if queued, False if dropped
        """
        try:
            self._queue.put_nowait(job)
            self._jobs_submitted += 1
            return True
        except asyncio.QueueFull:
            self._jobs_dropped += 1
            logger.warning(
                "progress_writer_queue_full",
                user_id=job.user_id,
                file_id=job.file_id,
                queue_size=self.queue_size,
                dropped_total=self._jobs_dropped,
            )
            return False

    # ==========================================================================
    # Background Worker
    # ==========================================================================

    async def start(self) -> None:
        """Start the background worker."""
        if self._running:
            logger.warning("progress_writer_already_running")
            return

        self._running = True
        self._worker_task = asyncio.create_task(
            self._worker_loop(),
            name="progress_writer",
        )
        logger.info("progress_writer_started", queue_size=self.queue_size)

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker and apply whatever is still queued."""
        if not self._running:
            return

        self._running = False

        if self._worker_task:
            try:
                await asyncio.wait_for(self._worker_task, timeout=timeout)
            except TimeoutError:
                logger.warning("progress_writer_stop_timeout")
                self._worker_task.cancel()
                with suppress(asyncio.CancelledError):
                    await self._worker_task
            except asyncio.CancelledError:
                pass

        await self._drain()

        logger.info(
            "progress_writer_stopped",
            jobs_submitted=self._jobs_submitted,
            jobs_processed=self._jobs_processed,
            jobs_failed=self._jobs_failed,
            jobs_dropped=self._jobs_dropped,
        )

    async def _worker_loop(self) -> None:
        while self._running:
            try:
                job = await asyncio.wait_for(
                    self._queue.get(), timeout=self.poll_interval
                )
            except TimeoutError:
                continue
            try:
                await self.process(job)
            except Exception:
                self._jobs_failed += 1
                logger.exception("progress_writer_job_error", file_id=job.file_id)

    async def _drain(self) -> None:
        remaining: list[PlaybackFlush] = []
        while not self._queue.empty():
            try:
                remaining.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break

        if remaining:
            logger.info("progress_writer_draining", count=len(remaining))
        for job in remaining:
            await self.process(job)

    async def process(self, job: PlaybackFlush) -> None:
        """Apply one flush: counters first, then the resume bookmark."""
        with RequestContext(request_id=job.request_id, user_id=job.user_id):
            try:
                await self.aggregator.record_playback_progress(
                    user_id=job.user_id,
                    file_id=job.file_id,
                    file_name=job.file_name,
                    current_time=job.current_time,
                    duration=job.duration,
                    path=job.path,
                    play_time_delta=job.play_time_delta,
                    idempotency_key=job.idempotency_key,
                )
            except ProgressError as e:
                self._jobs_failed += 1
                logger.warning(
                    "progress_flush_failed",
                    file_id=job.file_id,
                    code=e.code,
                    error=e.message,
                )
                return
            except Exception:
                self._jobs_failed += 1
                logger.exception("progress_flush_error", file_id=job.file_id)
                return

            # Counters are committed at this point; the bookmark is best effort
            try:
                await self.aggregator.record_last_position(
                    user_id=job.user_id,
                    file_id=job.file_id,
                    file_name=job.file_name,
                    current_time=job.current_time,
                    path=job.path,
                )
            except Exception:
                logger.exception("progress_bookmark_error", file_id=job.file_id)
            self._jobs_processed += 1

    # ==========================================================================
    # Status/Monitoring
    # ==========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict[str, Any]:
        """Writer counters for the health endpoint."""
        return {
            "running": self._running,
            "queue_depth": self._queue.qsize(),
            "queue_size": self.queue_size,
            "jobs_submitted": self._jobs_submitted,
            "jobs_processed": self._jobs_processed,
            "jobs_failed": self._jobs_failed,
            "jobs_dropped": self._jobs_dropped,
        }
