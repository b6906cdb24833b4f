"""Tests for the background progress writer."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from langplayer.progress.models import PathSegment
from langplayer.progress.service import NotInitializedError, ProgressAggregator
from langplayer.progress.store import MemoryProgressStore
from langplayer.progress.writer import PlaybackFlush, ProgressWriter


PATH = [
    PathSegment(id=None, name="Pimsleur"),
    PathSegment(id="it", name="Italian"),
    PathSegment(id="it-1", name="Level 1"),
]


def _flush(file_id: str = "a", delta: float = 15) -> PlaybackFlush:
    return PlaybackFlush(
        user_id="u1",
        file_id=file_id,
        file_name=f"{file_id}.mp3",
        current_time=60,
        duration=100,
        path=PATH,
        play_time_delta=delta,
        request_id="req-1",
    )


@pytest.fixture
def mock_aggregator():
    aggregator = Mock(spec=ProgressAggregator)
    aggregator.record_playback_progress = AsyncMock()
    aggregator.record_last_position = AsyncMock()
    return aggregator


class TestSubmit:
    """Tests for non-blocking submission."""

    def test_drops_when_full(self, mock_aggregator) -> None:
        writer = ProgressWriter(mock_aggregator, queue_size=1)

        assert writer.submit(_flush("a")) is True
        assert writer.submit(_flush("b")) is False

        stats = writer.get_stats()
        assert stats["jobs_submitted"] == 1
        assert stats["jobs_dropped"] == 1
        assert stats["queue_depth"] == 1


class TestProcess:
    """Tests for applying a single flush."""

    @pytest.mark.asyncio
    async def test_records_progress_then_bookmark(self, mock_aggregator) -> None:
        writer = ProgressWriter(mock_aggregator)

        await writer.process(_flush())

        mock_aggregator.record_playback_progress.assert_awaited_once()
        kwargs = mock_aggregator.record_playback_progress.await_args.kwargs
        assert kwargs["user_id"] == "u1"
        assert kwargs["play_time_delta"] == 15
        mock_aggregator.record_last_position.assert_awaited_once_with(
            user_id="u1",
            file_id="a",
            file_name="a.mp3",
            current_time=60,
            path=PATH,
        )
        assert writer.get_stats()["jobs_processed"] == 1

    @pytest.mark.asyncio
    async def test_progress_error_is_logged_not_raised(self, mock_aggregator) -> None:
        mock_aggregator.record_playback_progress.side_effect = NotInitializedError()
        writer = ProgressWriter(mock_aggregator)

        await writer.process(_flush())

        mock_aggregator.record_last_position.assert_not_awaited()
        assert writer.get_stats()["jobs_failed"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_logged_not_raised(self, mock_aggregator) -> None:
        mock_aggregator.record_playback_progress.side_effect = RuntimeError("boom")
        writer = ProgressWriter(mock_aggregator)

        await writer.process(_flush())

        assert writer.get_stats()["jobs_failed"] == 1

    @pytest.mark.asyncio
    async def test_bookmark_error_does_not_fail_flush(self, mock_aggregator) -> None:
        mock_aggregator.record_last_position.side_effect = RuntimeError("corrupt")
        writer = ProgressWriter(mock_aggregator)

        await writer.process(_flush())

        stats = writer.get_stats()
        assert stats["jobs_processed"] == 1
        assert stats["jobs_failed"] == 0


class TestLifecycle:
    """Tests for start/stop with a real aggregator."""

    @pytest.mark.asyncio
    async def test_worker_applies_queued_flushes(self) -> None:
        aggregator = ProgressAggregator(store=MemoryProgressStore())
        await aggregator.initialize("u1")
        writer = ProgressWriter(aggregator, poll_interval=0.01)
        await writer.start()

        writer.submit(_flush("a", delta=15))
        writer.submit(_flush("b", delta=20))
        for _ in range(100):
            if writer.get_stats()["jobs_processed"] == 2:
                break
            await asyncio.sleep(0.01)
        await writer.stop()

        doc = await aggregator.get_progress("u1")
        assert doc.total_listening_time == 35
        assert doc.last_track.file_id == "b"
        assert writer.is_running is False

    @pytest.mark.asyncio
    async def test_stop_drains_pending_jobs(self, mock_aggregator) -> None:
        writer = ProgressWriter(mock_aggregator)
        writer.submit(_flush("a"))
        writer.submit(_flush("b"))

        await writer.start()
        await writer.stop()

        assert mock_aggregator.record_playback_progress.await_count == 2
        assert writer.get_stats()["queue_depth"] == 0

    @pytest.mark.asyncio
    async def test_worker_survives_bookmark_failures(self, mock_aggregator) -> None:
        mock_aggregator.record_last_position.side_effect = [
            RuntimeError("corrupt"),
            None,
        ]
        writer = ProgressWriter(mock_aggregator, poll_interval=0.01)
        await writer.start()

        writer.submit(_flush("a"))
        writer.submit(_flush("b"))
        for _ in range(100):
            if writer.get_stats()["jobs_processed"] == 2:
                break
            await asyncio.sleep(0.01)

        assert writer.get_stats()["jobs_processed"] == 2
        assert writer.get_stats()["queue_depth"] == 0
        await writer.stop()

    @pytest.mark.asyncio
    async def test_stop_timeout_reaps_worker(self, mock_aggregator) -> None:
        started = asyncio.Event()

        async def hang(**kwargs):
            started.set()
            await asyncio.sleep(60)

        mock_aggregator.record_playback_progress.side_effect = hang
        writer = ProgressWriter(mock_aggregator, poll_interval=0.01)
        await writer.start()
        writer.submit(_flush("a"))
        await asyncio.wait_for(started.wait(), timeout=1)

        await writer.stop(timeout=0.05)

        pending = [
            task
            for task in asyncio.all_tasks()
            if task.get_name() == "progress_writer" and not task.done()
        ]
        assert pending == []
        assert writer.is_running is False
