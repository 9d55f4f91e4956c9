"""
Plan Tests - item workflow, calendar helpers and PlanService

Run with:
    python -m pytest tests/test_plans.py -v
"""

import os
import sys
from datetime import date, datetime, time, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class TestItemWorkflow:
    """Allowed status transitions and polling intervals."""

    def test_happy_path(self):
        from services.plans.state import can_transition

        path = ["pending", "researching", "ready", "draft", "approved", "generating",
                "completed", "scheduled", "posted"]
        for current, target in zip(path, path[1:]):
            assert can_transition(current, target), f"{current} -> {target}"

    def test_auto_approve_skips_draft(self):
        from services.plans.state import can_transition

        assert can_transition("ready", "approved")

    def test_posted_is_final(self):
        from services.plans.state import ItemStatus, can_transition

        assert ItemStatus.POSTED.is_terminal
        assert not can_transition("posted", "pending")
        assert not can_transition("posted", "failed")

    def test_failed_items_can_be_retried(self):
        from services.plans.state import can_transition

        assert can_transition("failed", "pending")
        assert can_transition("failed", "ready")
        assert not can_transition("failed", "posted")

    def test_staying_put_is_allowed(self):
        from services.plans.state import can_transition

        assert can_transition("draft", "draft")

    def test_ensure_transition_raises(self):
        from core.errors import InvalidTransitionError
        from services.plans.state import ensure_transition

        ensure_transition("approved", "generating")

        with pytest.raises(InvalidTransitionError):
            ensure_transition("pending", "posted")

        with pytest.raises(InvalidTransitionError):
            ensure_transition("pending", "bogus")

    def test_poll_interval_fast_while_in_flight(self):
        from services.plans.state import FAST_POLL_INTERVAL, recommended_poll_interval

        assert recommended_poll_interval(["posted", "generating"]) == FAST_POLL_INTERVAL
        assert recommended_poll_interval(["researching"]) == FAST_POLL_INTERVAL

    def test_poll_interval_queued(self):
        from services.plans.state import QUEUED_POLL_INTERVAL, recommended_poll_interval

        assert recommended_poll_interval(["draft", "ready"]) == QUEUED_POLL_INTERVAL

    def test_poll_interval_idle(self):
        from services.plans.state import IDLE_POLL_INTERVAL, recommended_poll_interval

        assert recommended_poll_interval(["posted", "failed", "draft"]) == IDLE_POLL_INTERVAL
        assert recommended_poll_interval([]) == IDLE_POLL_INTERVAL
        assert recommended_poll_interval(["unknown"]) == IDLE_POLL_INTERVAL


class TestScheduling:
    """Plan calendar helpers."""

    def test_normalize_time(self):
        from services.plans.scheduling import normalize_time

        assert normalize_time("9") == "09:00:00"
        assert normalize_time("9:30") == "09:30:00"
        assert normalize_time("18:05:09") == "18:05:09"
        assert normalize_time(time(7, 15)) == "07:15:00"
        assert normalize_time("25:00") is None
        assert normalize_time("noon") is None
        assert normalize_time("") is None
        assert normalize_time(None) is None

    def test_default_slot_grid(self):
        from services.plans.scheduling import slot_times

        assert slot_times(3) == ["09:00:00", "12:00:00", "15:00:00"]

    def test_custom_times_win_slot_by_slot(self):
        from services.plans.scheduling import slot_times

        assert slot_times(3, ["8:30", "", "bad"]) == ["08:30:00", "12:00:00", "15:00:00"]

    def test_more_slots_than_default_grid(self):
        from services.plans.scheduling import slot_times

        times = slot_times(7)
        assert times[-2:] == ["22:00:00", "23:00:00"]
        assert len(times) == 7

    def test_start_moves_to_tomorrow_after_trigger(self):
        from services.plans.scheduling import resolve_date_range

        now = datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)
        start, end = resolve_date_range(date(2025, 3, 10), None, "UTC", "09:00", now=now)

        assert start == date(2025, 3, 11)
        assert end == date(2025, 4, 10)

    def test_start_kept_before_trigger(self):
        from services.plans.scheduling import resolve_date_range

        now = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)
        start, end = resolve_date_range(date(2025, 3, 10), date(2025, 3, 12), "UTC", "09:00", now=now)

        assert start == date(2025, 3, 10)
        assert end == date(2025, 3, 12)

    def test_range_capped_at_a_year(self):
        from services.plans.scheduling import resolve_date_range

        now = datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc)
        start, end = resolve_date_range(date(2025, 2, 1), date(2027, 1, 1), "UTC", "09:00", now=now)

        assert (end - start).days == 365

    def test_inverted_range_defaults_to_thirty_days(self):
        from services.plans.scheduling import resolve_date_range

        now = datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc)
        start, end = resolve_date_range(date(2025, 2, 1), date(2025, 1, 20), "UTC", "09:00", now=now)

        assert (end - start).days == 30

    def test_local_to_utc(self):
        from services.plans.scheduling import local_to_utc

        result = local_to_utc("2025-01-15", "09:00", "Europe/Berlin")
        assert result == datetime(2025, 1, 15, 8, 0, tzinfo=timezone.utc)
        assert local_to_utc("2025-01-15", None, "UTC") is None

    def test_unknown_timezone_falls_back_to_utc(self):
        from services.plans.scheduling import get_zone

        assert get_zone("Not/AZone").key == "UTC"
        assert get_zone(None).key == "UTC"

    def test_trigger_window(self):
        from services.plans.scheduling import is_trigger_due

        def at(hour, minute):
            return datetime(2025, 3, 10, hour, minute, tzinfo=timezone.utc)

        assert is_trigger_due("09:00", "UTC", 5, now=at(9, 0))
        assert is_trigger_due("09:00", "UTC", 5, now=at(9, 5))
        assert not is_trigger_due("09:00", "UTC", 5, now=at(9, 6))
        assert not is_trigger_due("09:00", "UTC", 5, now=at(8, 59))

    def test_minutes_until(self):
        from services.plans.scheduling import minutes_until

        now = datetime(2025, 3, 10, 8, 30, tzinfo=timezone.utc)
        assert minutes_until("2025-03-10", "09:00:00", "UTC", now=now) == 30.0


def make_plan(**overrides):
    plan = {
        "id": "plan-1",
        "name": "Daily shorts",
        "videos_per_day": 2,
        "timezone": "UTC",
        "trigger_time": "09:00:00",
        "auto_research": False,
        "default_platforms": ["tiktok"],
    }
    plan.update(overrides)
    return plan


def make_repository(plan=None):
    repo = AsyncMock()
    repo.create_plan.return_value = plan or make_plan()
    repo.get_plan.return_value = plan or make_plan()

    counter = {"n": 0}

    async def insert_item(plan_id, values):
        counter["n"] += 1
        return {"id": f"item-{counter['n']}", "plan_id": plan_id, **values}

    repo.insert_item.side_effect = insert_item
    return repo


class TestPlanService:
    """PlanService with an in-memory repository mock."""

    NOW = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_create_plan_generates_items(self):
        from services.plans.service import PlanService

        repo = make_repository()
        service = PlanService(repository=repo, research=AsyncMock())

        result = await service.create_plan(
            "user-1",
            {"name": "Daily shorts", "videos_per_day": 2, "start_date": "2025-01-01", "end_date": "2025-01-02"},
            video_topics=["Prop firms explained"],
            now=self.NOW,
        )

        assert result["plan"]["id"] == "plan-1"
        assert len(result["items"]) == 4

        first = result["items"][0]
        assert first["topic"] == "Prop firms explained"
        assert first["status"] == "ready"
        assert first["scheduled_time"] == time(9, 0)
        assert result["items"][1]["status"] == "pending"
        assert result["items"][1]["scheduled_time"] == time(12, 0)

        values = repo.create_plan.call_args.args[1]
        assert values["enabled"] is True
        assert values["auto_research"] is True
        assert values["auto_create"] is False
        assert values["timezone"] == "UTC"
        assert values["trigger_time"] == time(9, 0)

    @pytest.mark.asyncio
    async def test_create_plan_requires_fields(self):
        from core.errors import ValidationError
        from services.plans.service import PlanService

        service = PlanService(repository=make_repository(), research=AsyncMock())

        with pytest.raises(ValidationError):
            await service.create_plan("user-1", {"videos_per_day": 2, "start_date": "2025-01-01"})

    @pytest.mark.asyncio
    async def test_create_plan_rejects_too_many_videos(self):
        from core.errors import ValidationError
        from services.plans.service import PlanService

        repo = make_repository()
        service = PlanService(repository=repo, research=AsyncMock())

        with pytest.raises(ValidationError):
            await service.create_plan("user-1", {"name": "x", "videos_per_day": 11, "start_date": "2025-01-01"})
        repo.create_plan.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_plan_rejects_unknown_trigger(self):
        from core.errors import ValidationError
        from services.plans.service import PlanService

        service = PlanService(repository=make_repository(), research=AsyncMock())

        with pytest.raises(ValidationError):
            await service.create_plan("user-1", {
                "name": "x", "videos_per_day": 1, "start_date": "2025-01-01",
                "auto_schedule_trigger": "hourly",
            })

    @pytest.mark.asyncio
    async def test_create_plan_rolls_back_on_item_failure(self):
        from services.plans.service import PlanService

        repo = make_repository()
        repo.insert_item.side_effect = RuntimeError("insert failed")
        service = PlanService(repository=repo, research=AsyncMock())

        with pytest.raises(RuntimeError):
            await service.create_plan(
                "user-1",
                {"name": "x", "videos_per_day": 1, "start_date": "2025-01-01"},
                now=self.NOW,
            )

        repo.delete_plan.assert_awaited_once_with("plan-1", "user-1")

    @pytest.mark.asyncio
    async def test_auto_research_starts_background_topics(self):
        from services.plans.service import PlanService

        repo = make_repository(make_plan(auto_research=True, videos_per_day=1))
        service = PlanService(repository=repo, research=AsyncMock())
        service._spawn = MagicMock()

        items = await service.generate_plan_items("plan-1", "user-1", "2025-01-01", "2025-01-01", now=self.NOW)

        assert len(items) == 1
        service._spawn.assert_called_once()
        service._spawn.call_args.args[0].close()

    @pytest.mark.asyncio
    async def test_get_plan_missing(self):
        from core.errors import NotFoundError
        from services.plans.service import PlanService

        repo = make_repository()
        repo.get_plan.return_value = None
        service = PlanService(repository=repo, research=AsyncMock())

        with pytest.raises(NotFoundError):
            await service.get_plan("nope", "user-1")

    @pytest.mark.asyncio
    async def test_items_inherit_plan_platforms(self):
        from services.plans.service import PlanService

        repo = make_repository()
        repo.get_items.return_value = [
            {"id": "a", "status": "draft", "platforms": None},
            {"id": "b", "status": "generating", "platforms": ["youtube"]},
        ]
        service = PlanService(repository=repo, research=AsyncMock())

        overview = await service.get_plan_overview("plan-1", "user-1")

        assert overview["items"][0]["platforms"] == ["tiktok"]
        assert overview["items"][1]["platforms"] == ["youtube"]
        assert overview["poll_interval_seconds"] == 10

    @pytest.mark.asyncio
    async def test_update_plan_filters_fields(self):
        from core.errors import ValidationError
        from services.plans.service import PlanService

        repo = make_repository()
        repo.update_plan.return_value = make_plan(name="Renamed")
        service = PlanService(repository=repo, research=AsyncMock())

        plan = await service.update_plan("plan-1", "user-1", {"name": "Renamed", "user_id": "hijack"})

        assert plan["name"] == "Renamed"
        assert repo.update_plan.call_args.args[2] == {"name": "Renamed"}

        with pytest.raises(ValidationError):
            await service.update_plan("plan-1", "user-1", {"trigger_time": "later"})

    @pytest.mark.asyncio
    async def test_update_plan_rejects_malformed_values(self):
        from core.errors import ValidationError
        from services.plans.service import PlanService

        repo = make_repository()
        service = PlanService(repository=repo, research=AsyncMock())

        with pytest.raises(ValidationError, match="end_date"):
            await service.update_plan("plan-1", "user-1", {"end_date": "next week"})
        with pytest.raises(ValidationError, match="videos_per_day"):
            await service.update_plan("plan-1", "user-1", {"videos_per_day": None})
        with pytest.raises(ValidationError, match="between"):
            await service.update_plan("plan-1", "user-1", {"videos_per_day": "12"})
        repo.update_plan.assert_not_awaited()

        repo.update_plan.return_value = make_plan()
        await service.update_plan("plan-1", "user-1", {"videos_per_day": "4", "end_date": "2025-03-01"})
        assert repo.update_plan.call_args.args[2] == {"videos_per_day": 4, "end_date": date(2025, 3, 1)}

    @pytest.mark.asyncio
    async def test_delete_missing_plan(self):
        from core.errors import NotFoundError
        from services.plans.service import PlanService

        repo = make_repository()
        repo.delete_plan.return_value = False
        service = PlanService(repository=repo, research=AsyncMock())

        with pytest.raises(NotFoundError):
            await service.delete_plan("plan-1", "user-1")


class TestTopicGeneration:
    """generate_topic_for_item picks an unused category."""

    def _item(self, **overrides):
        item = {
            "id": "item-1",
            "plan_id": "plan-1",
            "status": "pending",
            "topic": None,
            "category": None,
            "scheduled_date": "2025-01-01",
        }
        item.update(overrides)
        return item

    @pytest.mark.asyncio
    async def test_picks_first_unused_category(self):
        from services.plans.service import PlanService
        from services.research.perplexity_client import Topic

        repo = make_repository()
        repo.get_item_for_user.return_value = self._item()
        repo.recent_topics.return_value = [{"idea": "Old topic", "category": "Trading"}]
        repo.categories_on_date.return_value = ["Trading"]
        repo.update_item.side_effect = lambda item_id, values: {"id": item_id, **values}

        research = AsyncMock()
        research.generate_topics.return_value = [
            Topic(idea="Futures vs Forex", category="Trading"),
            Topic(idea="Freedom math", category="Fin. Freedom"),
            Topic(idea="Nomad desk setup", category="Lifestyle"),
        ]
        service = PlanService(repository=repo, research=research)

        item = await service.generate_topic_for_item("item-1", "user-1")

        assert item["topic"] == "Freedom math"
        assert item["category"] == "Fin. Freedom"
        assert item["status"] == "ready"
        research.generate_topics.assert_awaited_once_with([{"idea": "Old topic", "category": "Trading"}])
        first_update = repo.update_item.call_args_list[0].args[1]
        assert first_update["status"] == "researching"

    @pytest.mark.asyncio
    async def test_existing_topic_kept(self):
        from services.plans.service import PlanService

        repo = make_repository()
        repo.get_item_for_user.return_value = self._item(topic="My own idea", status="ready")
        repo.update_item.side_effect = lambda item_id, values: {"id": item_id, "topic": "My own idea", **values}
        research = AsyncMock()
        service = PlanService(repository=repo, research=research)

        item = await service.generate_topic_for_item("item-1", "user-1")

        assert item["topic"] == "My own idea"
        assert item["category"] == "general"
        research.generate_topics.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_existing_topic_respects_workflow(self):
        from core.errors import InvalidTransitionError
        from services.plans.service import PlanService

        repo = make_repository()
        repo.get_item_for_user.return_value = self._item(topic="My own idea", status="posted")
        service = PlanService(repository=repo, research=AsyncMock())

        with pytest.raises(InvalidTransitionError):
            await service.generate_topic_for_item("item-1", "user-1")
        repo.update_item.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_existing_topic_on_pending_item(self):
        from services.plans.service import PlanService

        repo = make_repository()
        repo.get_item_for_user.return_value = self._item(topic="My own idea", category="Trading")
        repo.update_item.side_effect = lambda item_id, values: {"id": item_id, **values}
        service = PlanService(repository=repo, research=AsyncMock())

        item = await service.generate_topic_for_item("item-1", "user-1")

        assert item == {"id": "item-1", "status": "ready", "error_message": None, "category": "Trading"}

    @pytest.mark.asyncio
    async def test_rate_limit_marks_item_failed(self):
        from services.plans.service import RATE_LIMIT_MESSAGE, PlanService
        from services.research.perplexity_client import ResearchError

        repo = make_repository()
        repo.get_item_for_user.return_value = self._item()
        repo.recent_topics.return_value = []
        research = AsyncMock()
        research.generate_topics.side_effect = ResearchError("slow down", error_code="RATE_LIMIT", status_code=429)
        service = PlanService(repository=repo, research=research)

        with pytest.raises(ResearchError):
            await service.generate_topic_for_item("item-1", "user-1")

        last_update = repo.update_item.call_args_list[-1].args[1]
        assert last_update == {"status": "failed", "error_message": RATE_LIMIT_MESSAGE}

    @pytest.mark.asyncio
    async def test_busy_item_rejected(self):
        from core.errors import InvalidTransitionError
        from services.plans.service import PlanService

        repo = make_repository()
        repo.get_item_for_user.return_value = self._item(status="generating")
        service = PlanService(repository=repo, research=AsyncMock())

        with pytest.raises(InvalidTransitionError):
            await service.generate_topic_for_item("item-1", "user-1")

    @pytest.mark.asyncio
    async def test_update_item_follows_workflow(self):
        from core.errors import InvalidTransitionError
        from services.plans.service import PlanService

        repo = make_repository()
        repo.get_item_for_user.return_value = self._item(status="pending")
        repo.update_item.side_effect = lambda item_id, values: {"id": item_id, **values}
        service = PlanService(repository=repo, research=AsyncMock())

        with pytest.raises(InvalidTransitionError):
            await service.update_plan_item("item-1", "user-1", {"status": "posted"})

        item = await service.update_plan_item("item-1", "user-1", {"topic": "New", "scheduled_time": "14:30"})
        assert item["scheduled_time"] == time(14, 30)

    def test_friendly_error_message(self):
        from services.plans.service import RATE_LIMIT_MESSAGE, friendly_error_message

        assert friendly_error_message(RuntimeError("HTTP 429 Too Many Requests")) == RATE_LIMIT_MESSAGE
        assert friendly_error_message(RuntimeError("")) == "Failed to prepare topic"
        assert friendly_error_message(RuntimeError("boom")) == "boom"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
