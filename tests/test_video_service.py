"""
Video Service Tests - submit-then-refresh flow and the job tracker

Run with:
    python -m pytest tests/test_video_service.py -v
"""

import os
import sys
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture
def mock_db_pool():
    """Create a mock database pool."""
    pool = MagicMock()
    conn = AsyncMock()
    pool.acquire = MagicMock(return_value=AsyncMock(
        __aenter__=AsyncMock(return_value=conn),
        __aexit__=AsyncMock(return_value=None),
    ))
    return pool, conn


def make_tracker():
    tracker = AsyncMock()
    tracker.create_video.return_value = {"id": "video-1", "status": "pending", "topic": "Prop firms"}
    return tracker


class TestBuildVideoPrompt:
    """Sora prompt assembly."""

    def test_includes_topic_script_and_limits(self):
        from services.video_generation.service import build_video_prompt

        prompt = build_video_prompt("Prop firms", "Hook then tip", duration_seconds=15)

        assert prompt.startswith("Style: educational. Topic: Prop firms. Script: Hook then tip.")
        assert "under 33 words and 210 characters" in prompt

    def test_missing_topic(self):
        from services.video_generation.service import build_video_prompt

        assert "Topic: General." in build_video_prompt(None)

    def test_capped_length(self):
        from services.video_generation.service import MAX_PROMPT_LENGTH, build_video_prompt

        prompt = build_video_prompt("x", "word " * 500)
        assert len(prompt) == MAX_PROMPT_LENGTH + 3
        assert prompt.endswith("...")


class TestVideoService:
    """request_video and refresh_video with a mocked client and tracker."""

    @pytest.mark.asyncio
    async def test_request_video_submits(self):
        from services.video_generation.service import VideoService

        client = AsyncMock()
        client.submit.return_value = ("task-1", "sora-2")
        tracker = make_tracker()
        service = VideoService(client=client, tracker=tracker)

        video = await service.request_video("user-1", "Prop firms", "script", plan_item_id="item-1")

        assert video["status"] == "generating"
        assert video["provider_task_id"] == "task-1"
        tracker.mark_submitted.assert_awaited_once_with("video-1", "task-1", "sora-2")
        assert tracker.create_video.call_args.kwargs["plan_item_id"] == "item-1"

    @pytest.mark.asyncio
    async def test_request_video_marks_row_failed(self):
        from services.video_generation.poyo_client import VideoGenerationError
        from services.video_generation.service import VideoService

        client = AsyncMock()
        client.submit.side_effect = VideoGenerationError("no credits", error_code="INSUFFICIENT_CREDITS")
        tracker = make_tracker()
        service = VideoService(client=client, tracker=tracker)

        with pytest.raises(VideoGenerationError):
            await service.request_video("user-1", "Prop firms", "script")

        tracker.fail_video.assert_awaited_once_with("video-1", "no credits")
        tracker.mark_submitted.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refresh_completed(self):
        from services.plans.state import VideoStatus
        from services.video_generation.poyo_client import TaskStatus, VideoResult
        from services.video_generation.service import VideoService

        client = AsyncMock()
        client.get_task_status.return_value = VideoResult(
            task_id="task-1", status=TaskStatus.FINISHED, video_url="https://cdn/v.mp4"
        )
        tracker = make_tracker()
        service = VideoService(client=client, tracker=tracker)

        status = await service.refresh_video({"id": "video-1", "provider_task_id": "task-1"})

        assert status == "completed"
        tracker.complete_video.assert_awaited_once_with("video-1", "https://cdn/v.mp4")
        tracker.sync_plan_item.assert_awaited_once_with("video-1", VideoStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_refresh_finished_without_url_fails(self):
        from services.video_generation.poyo_client import TaskStatus, VideoResult
        from services.video_generation.service import VideoService

        client = AsyncMock()
        client.get_task_status.return_value = VideoResult(task_id="task-1", status=TaskStatus.FINISHED)
        tracker = make_tracker()
        service = VideoService(client=client, tracker=tracker)

        status = await service.refresh_video({"id": "video-1", "provider_task_id": "task-1"})

        assert status == "failed"
        tracker.complete_video.assert_not_awaited()
        tracker.fail_video.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refresh_in_progress_bumps_progress(self):
        from services.video_generation.poyo_client import TaskStatus, VideoResult
        from services.video_generation.service import VideoService

        client = AsyncMock()
        client.get_task_status.return_value = VideoResult(task_id="task-1", status=TaskStatus.IN_PROGRESS)
        tracker = make_tracker()
        service = VideoService(client=client, tracker=tracker)

        status = await service.refresh_video({"id": "video-1", "provider_task_id": "task-1", "progress": 93})

        assert status == "generating"
        tracker.update_progress.assert_awaited_once_with("video-1", 95)

    @pytest.mark.asyncio
    async def test_refresh_unregistered_task_keeps_waiting(self):
        from services.video_generation.poyo_client import VideoGenerationError
        from services.video_generation.service import VideoService

        client = AsyncMock()
        client.get_task_status.side_effect = VideoGenerationError("not found", error_code="NOT_FOUND", status_code=404)
        service = VideoService(client=client, tracker=make_tracker())

        assert await service.refresh_video({"id": "video-1", "provider_task_id": "task-1"}) == "generating"

    @pytest.mark.asyncio
    async def test_refresh_unregistered_task_gives_up_after_an_hour(self):
        from services.plans.state import VideoStatus
        from services.video_generation.poyo_client import VideoGenerationError
        from services.video_generation.service import VideoService

        client = AsyncMock()
        client.get_task_status.side_effect = VideoGenerationError("not found", error_code="NOT_FOUND", status_code=404)
        tracker = make_tracker()
        service = VideoService(client=client, tracker=tracker)
        video = {
            "id": "video-1",
            "provider_task_id": "task-1",
            "created_at": datetime(2025, 1, 15, 8, 0, tzinfo=timezone.utc),
        }

        recent = await service.refresh_video(video, now=datetime(2025, 1, 15, 8, 45, tzinfo=timezone.utc))
        assert recent == "generating"
        tracker.fail_video.assert_not_awaited()

        stale = await service.refresh_video(video, now=datetime(2025, 1, 15, 9, 5, tzinfo=timezone.utc))
        assert stale == "failed"
        message = "Video task was never registered with the provider"
        tracker.fail_video.assert_awaited_once_with("video-1", message)
        tracker.sync_plan_item.assert_awaited_once_with("video-1", VideoStatus.FAILED, message)

    @pytest.mark.asyncio
    async def test_wait_for_video_completes(self):
        from services.plans.state import VideoStatus
        from services.video_generation.poyo_client import TaskStatus, VideoResult
        from services.video_generation.service import VideoService

        client = AsyncMock()
        client.wait_for_completion.return_value = VideoResult(
            task_id="task-1", status=TaskStatus.FINISHED, video_url="https://cdn/v.mp4"
        )
        tracker = make_tracker()
        tracker.get_video.side_effect = [
            {"id": "video-1", "status": "generating", "provider_task_id": "task-1"},
            {"id": "video-1", "status": "completed", "video_url": "https://cdn/v.mp4"},
        ]
        service = VideoService(client=client, tracker=tracker)

        video = await service.wait_for_video("video-1")

        assert video["status"] == "completed"
        client.wait_for_completion.assert_awaited_once_with("task-1")
        tracker.complete_video.assert_awaited_once_with("video-1", "https://cdn/v.mp4")
        tracker.sync_plan_item.assert_awaited_once_with("video-1", VideoStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_wait_for_video_failed_task(self):
        from services.video_generation.poyo_client import VideoGenerationError
        from services.video_generation.service import VideoService

        client = AsyncMock()
        client.wait_for_completion.side_effect = VideoGenerationError("Sora video generation failed: nsfw", error_code="JOB_FAILED")
        tracker = make_tracker()
        tracker.get_video.return_value = {"id": "video-1", "status": "generating", "provider_task_id": "task-1"}
        service = VideoService(client=client, tracker=tracker)

        with pytest.raises(VideoGenerationError):
            await service.wait_for_video("video-1")

        tracker.fail_video.assert_awaited_once_with("video-1", "Sora video generation failed: nsfw")

    @pytest.mark.asyncio
    async def test_wait_for_video_timeout_keeps_generating(self):
        from services.video_generation.poyo_client import VideoGenerationError
        from services.video_generation.service import VideoService

        client = AsyncMock()
        client.wait_for_completion.side_effect = VideoGenerationError("timed out", error_code="POLL_TIMEOUT")
        tracker = make_tracker()
        tracker.get_video.return_value = {"id": "video-1", "status": "generating", "provider_task_id": "task-1"}
        service = VideoService(client=client, tracker=tracker)

        with pytest.raises(VideoGenerationError):
            await service.wait_for_video("video-1")

        tracker.fail_video.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wait_for_finished_or_missing_video(self):
        from core.errors import NotFoundError
        from services.video_generation.service import VideoService

        client = AsyncMock()
        tracker = make_tracker()
        service = VideoService(client=client, tracker=tracker)

        tracker.get_video.return_value = {"id": "video-1", "status": "completed"}
        assert (await service.wait_for_video("video-1"))["status"] == "completed"
        client.wait_for_completion.assert_not_awaited()

        tracker.get_video.return_value = None
        with pytest.raises(NotFoundError):
            await service.wait_for_video("video-9")

    @pytest.mark.asyncio
    async def test_refresh_all_counts_errors(self):
        from services.video_generation.poyo_client import TaskStatus, VideoGenerationError, VideoResult
        from services.video_generation.service import VideoService

        client = AsyncMock()
        client.get_task_status.side_effect = [
            VideoResult(task_id="a", status=TaskStatus.FINISHED, video_url="https://cdn/a.mp4"),
            VideoGenerationError("server error", error_code="SERVER_ERROR", status_code=500),
            VideoResult(task_id="c", status=TaskStatus.FAILED, error_message="policy"),
        ]
        tracker = make_tracker()
        tracker.get_generating_videos.return_value = [
            {"id": "v-a", "provider_task_id": "a"},
            {"id": "v-b", "provider_task_id": "b"},
            {"id": "v-c", "provider_task_id": "c"},
        ]
        service = VideoService(client=client, tracker=tracker)

        counts = await service.refresh_generating_videos()

        assert counts == {"checked": 3, "completed": 1, "failed": 1, "errors": 1}


class TestVideoJobTracker:
    """SQL side of the tracker against a mocked pool."""

    @pytest.mark.asyncio
    async def test_create_video(self, mock_db_pool):
        from services.video_generation.job_tracker import VideoJobTracker

        pool, conn = mock_db_pool
        conn.fetchrow.return_value = {"id": "video-1", "status": "pending"}

        video = await VideoJobTracker(pool).create_video("user-1", "Topic", "Script", plan_item_id="item-1")

        assert video == {"id": "video-1", "status": "pending"}
        args = conn.fetchrow.call_args.args
        assert "INSERT INTO videos" in args[0]
        assert args[1:] == ("user-1", "Topic", "Script", "9:16", 15, "item-1", "pending")

    @pytest.mark.asyncio
    async def test_sync_plan_item(self, mock_db_pool):
        from services.plans.state import VideoStatus
        from services.video_generation.job_tracker import VideoJobTracker

        pool, conn = mock_db_pool
        conn.execute.return_value = "UPDATE 1"

        updated = await VideoJobTracker(pool).sync_plan_item("video-1", VideoStatus.FAILED, "policy")

        assert updated == 1
        args = conn.execute.call_args.args
        assert args[1:] == ("failed", "policy", "video-1", "generating")

    @pytest.mark.asyncio
    async def test_get_video_missing(self, mock_db_pool):
        from services.video_generation.job_tracker import VideoJobTracker

        pool, conn = mock_db_pool
        conn.fetchrow.return_value = None

        assert await VideoJobTracker(pool).get_video("video-1", "user-1") is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
