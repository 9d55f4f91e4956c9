"""
Plan Service

Creates content plans, lays out their per-day video slots and keeps item
status changes inside the workflow defined in state.py.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

import asyncpg

from core.database import get_pool
from core.errors import InvalidTransitionError, NotFoundError, ProviderError, ValidationError
from services.research.perplexity_client import PerplexityClient, get_perplexity_client

from .repository import PlanRepository
from .scheduling import (
    DEFAULT_TRIGGER_TIME,
    normalize_time,
    parse_date,
    parse_time,
    resolve_date_range,
    slot_times,
)
from .state import ItemStatus, TriggerMode, ensure_transition, recommended_poll_interval

logger = logging.getLogger(__name__)

MAX_VIDEOS_PER_DAY = 10
RECENT_TOPICS_LIMIT = 10
RATE_LIMIT_MESSAGE = (
    "Rate limit exceeded. The research service is temporarily unavailable. "
    "Please try again in a few minutes."
)

# Fields a client may change on an item directly
EDITABLE_ITEM_FIELDS = (
    "topic",
    "category",
    "description",
    "why_important",
    "useful_tips",
    "script",
    "script_status",
    "platforms",
    "caption",
    "status",
    "scheduled_time",
    "error_message",
)

EDITABLE_PLAN_FIELDS = (
    "name",
    "videos_per_day",
    "end_date",
    "enabled",
    "auto_research",
    "auto_create",
    "auto_approve",
    "auto_schedule_trigger",
    "trigger_time",
    "default_platforms",
    "timezone",
)


def friendly_error_message(error: BaseException, fallback: str = "Failed to prepare topic") -> str:
    """Error text suitable for showing on a plan item."""
    message = str(error) or fallback
    rate_limited = isinstance(error, ProviderError) and error.is_rate_limited
    if rate_limited or "Rate limit" in message or "429" in message:
        return RATE_LIMIT_MESSAGE
    return message


def pick_topic(topics: list, used_categories: list[str]):
    """First topic whose category is not yet used that day, else the first one."""
    for topic in topics:
        if topic.category not in used_categories:
            return topic
    return topics[0]


class PlanService:
    """
    Usage:
        service = PlanService()
        result = await service.create_plan(user_id, {"name": "Daily", "videos_per_day": 3,
                                                     "start_date": "2025-01-01"})
        items = await service.get_plan_items(result["plan"]["id"], user_id)
    """

    def __init__(
        self,
        repository: Optional[PlanRepository] = None,
        research: Optional[PerplexityClient] = None,
        pool: Optional[asyncpg.Pool] = None,
    ):
        self._repository = repository
        self._research = research
        self._pool = pool
        self._background: set[asyncio.Task] = set()

    async def get_repository(self) -> PlanRepository:
        if self._repository is None:
            self._repository = PlanRepository(self._pool or await get_pool())
        return self._repository

    @property
    def research(self) -> PerplexityClient:
        if self._research is None:
            self._research = get_perplexity_client()
        return self._research

    # -- plans ---------------------------------------------------------------

    async def create_plan(
        self,
        user_id: str,
        data: dict[str, Any],
        video_times: Optional[list] = None,
        video_topics: Optional[list] = None,
        video_categories: Optional[list] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Insert a plan and generate its items.

        Returns:
            {"plan": ..., "items": [...]}
        """
        if not data.get("name") or not data.get("videos_per_day") or not data.get("start_date"):
            raise ValidationError("name, videos_per_day, and start_date are required")

        try:
            videos_per_day = int(data["videos_per_day"])
        except (TypeError, ValueError):
            raise ValidationError("videos_per_day must be a number")
        if not 1 <= videos_per_day <= MAX_VIDEOS_PER_DAY:
            raise ValidationError(f"videos_per_day must be between 1 and {MAX_VIDEOS_PER_DAY}")

        trigger = data.get("auto_schedule_trigger") or TriggerMode.DAILY.value
        try:
            TriggerMode(trigger)
        except ValueError:
            raise ValidationError(f"Invalid auto_schedule_trigger: {trigger}")

        try:
            start_date = parse_date(data["start_date"])
            end_date = parse_date(data.get("end_date"))
        except ValueError:
            raise ValidationError("Dates must be YYYY-MM-DD")

        values = {
            "name": data["name"],
            "videos_per_day": videos_per_day,
            "start_date": start_date,
            "end_date": end_date,
            "enabled": data.get("enabled") is not False,
            "auto_research": data.get("auto_research") is not False,
            "auto_create": data.get("auto_create") is True,
            "auto_approve": data.get("auto_approve") is True,
            "auto_schedule_trigger": trigger,
            "trigger_time": parse_time(data.get("trigger_time")) or parse_time(DEFAULT_TRIGGER_TIME),
            "default_platforms": data.get("default_platforms") or [],
            "timezone": data.get("timezone") or "UTC",
        }

        repo = await self.get_repository()
        plan = await repo.create_plan(user_id, values)
        logger.info(f"[Plan] Created plan {plan['id']} '{plan['name']}' for user {user_id}")

        try:
            items = await self.generate_plan_items(
                plan["id"],
                user_id,
                start_date,
                end_date,
                custom_times=video_times,
                custom_topics=video_topics,
                custom_categories=video_categories,
                now=now,
            )
        except Exception:
            await repo.delete_plan(plan["id"], user_id)
            raise

        return {"plan": plan, "items": items}

    async def get_user_plans(self, user_id: str) -> list[dict]:
        repo = await self.get_repository()
        return await repo.list_plans(user_id)

    async def get_plan(self, plan_id, user_id: str) -> dict:
        repo = await self.get_repository()
        plan = await repo.get_plan(plan_id, user_id)
        if plan is None:
            raise NotFoundError("Plan not found")
        return plan

    async def get_plan_items(self, plan_id, user_id: str) -> list[dict]:
        """Items in posting order; items without platforms inherit the plan default."""
        plan = await self.get_plan(plan_id, user_id)
        repo = await self.get_repository()
        items = await repo.get_items(plan_id)
        for item in items:
            if item.get("platforms") is None and plan.get("default_platforms") is not None:
                item["platforms"] = plan["default_platforms"]
        return items

    async def get_plan_overview(self, plan_id, user_id: str) -> dict:
        """Plan, items and the polling interval the client should use."""
        plan = await self.get_plan(plan_id, user_id)
        items = await self.get_plan_items(plan_id, user_id)
        return {
            "plan": plan,
            "items": items,
            "poll_interval_seconds": recommended_poll_interval(i["status"] for i in items),
        }

    async def update_plan(self, plan_id, user_id: str, updates: dict[str, Any]) -> dict:
        values = {k: v for k, v in updates.items() if k in EDITABLE_PLAN_FIELDS}
        if not values:
            raise ValidationError("No updatable fields provided")

        if "trigger_time" in values:
            values["trigger_time"] = parse_time(values["trigger_time"])
            if values["trigger_time"] is None:
                raise ValidationError("trigger_time must be HH:MM or HH:MM:SS")
        if "end_date" in values:
            try:
                values["end_date"] = parse_date(values["end_date"])
            except ValueError:
                raise ValidationError("end_date must be YYYY-MM-DD")
        if "auto_schedule_trigger" in values:
            try:
                TriggerMode(values["auto_schedule_trigger"])
            except ValueError:
                raise ValidationError(f"Invalid auto_schedule_trigger: {values['auto_schedule_trigger']}")
        if "videos_per_day" in values:
            try:
                values["videos_per_day"] = int(values["videos_per_day"])
            except (TypeError, ValueError):
                raise ValidationError("videos_per_day must be a number")
            if not 1 <= values["videos_per_day"] <= MAX_VIDEOS_PER_DAY:
                raise ValidationError(f"videos_per_day must be between 1 and {MAX_VIDEOS_PER_DAY}")

        repo = await self.get_repository()
        plan = await repo.update_plan(plan_id, user_id, values)
        if plan is None:
            raise NotFoundError("Plan not found")
        return plan

    async def delete_plan(self, plan_id, user_id: str):
        repo = await self.get_repository()
        if not await repo.delete_plan(plan_id, user_id):
            raise NotFoundError("Plan not found")
        logger.info(f"[Plan] Deleted plan {plan_id}")

    # -- items ---------------------------------------------------------------

    async def generate_plan_items(
        self,
        plan_id,
        user_id: str,
        start_date,
        end_date=None,
        custom_times: Optional[list] = None,
        custom_topics: Optional[list] = None,
        custom_categories: Optional[list] = None,
        now: Optional[datetime] = None,
    ) -> list[dict]:
        """
        Create one item per slot per day.

        Slots with a custom topic start ``ready``; the rest start ``pending``
        and, for auto-research plans, get topics generated in the background.

        Raises:
            ValidationError: No items could be created
        """
        plan = await self.get_plan(plan_id, user_id)
        repo = await self.get_repository()

        start, end = resolve_date_range(
            parse_date(start_date),
            parse_date(end_date),
            plan.get("timezone"),
            plan.get("trigger_time"),
            now=now,
        )
        times = slot_times(plan["videos_per_day"], custom_times)
        logger.info(
            f"[Plan] Generating items for plan {plan_id}: {start} to {end}, slots {times}"
        )

        items = []
        needs_topic = []
        day = start
        while day <= end:
            for index, slot in enumerate(times):
                topic = None
                if custom_topics and index < len(custom_topics) and custom_topics[index]:
                    topic = str(custom_topics[index]).strip() or None
                category = None
                if custom_categories and index < len(custom_categories):
                    category = custom_categories[index] or None

                item = await repo.insert_item(plan_id, {
                    "scheduled_date": day,
                    "scheduled_time": parse_time(slot),
                    "topic": topic,
                    "category": category,
                    "status": (ItemStatus.READY if topic else ItemStatus.PENDING).value,
                })
                items.append(item)
                if not topic:
                    needs_topic.append(item["id"])
            day += timedelta(days=1)

        if not items:
            raise ValidationError(f"Failed to create any plan items between {start} and {end}")

        logger.info(f"[Plan] Generated {len(items)} items for plan {plan_id}")

        if plan.get("auto_research") and needs_topic:
            self._spawn(self._generate_topics_in_background(needs_topic, user_id))

        return items

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _generate_topics_in_background(self, item_ids: list, user_id: str):
        for item_id in item_ids:
            try:
                await self.generate_topic_for_item(item_id, user_id)
            except Exception as e:
                logger.error(f"[Plan] Error generating topic for item {item_id}: {e}")

    async def generate_topic_for_item(self, item_id, user_id: str) -> dict:
        """
        Give an item a topic and mark it ``ready``.

        User-provided topics are kept as-is. Otherwise three fresh topics are
        generated and the first one whose category is still unused on that
        date wins.
        """
        repo = await self.get_repository()
        item = await repo.get_item_for_user(item_id, user_id)
        if item is None:
            raise NotFoundError("Plan item not found")

        if item.get("topic"):
            if item["status"] != ItemStatus.READY.value:
                ensure_transition(item["status"], ItemStatus.READY.value)
            return await repo.update_item(item_id, {
                "status": ItemStatus.READY.value,
                "error_message": None,
                "category": item.get("category") or "general",
            })

        if item["status"] not in (ItemStatus.PENDING, ItemStatus.FAILED, ItemStatus.RESEARCHING):
            raise InvalidTransitionError(item["status"], ItemStatus.RESEARCHING.value)

        await repo.update_item(item_id, {"status": ItemStatus.RESEARCHING.value, "error_message": None})

        try:
            recent = await repo.recent_topics(user_id, RECENT_TOPICS_LIMIT)
            topics = await self.research.generate_topics(recent)
            used = await repo.categories_on_date(item["plan_id"], item["scheduled_date"])
            chosen = pick_topic(topics, used)
        except Exception as e:
            await repo.update_item(item_id, {
                "status": ItemStatus.FAILED.value,
                "error_message": friendly_error_message(e),
            })
            raise

        logger.info(f"[Plan] Item {item_id} topic: {chosen.idea} ({chosen.category})")
        return await repo.update_item(item_id, {
            "topic": chosen.idea,
            "category": chosen.category,
            "status": ItemStatus.READY.value,
            "error_message": None,
        })

    async def update_plan_item(self, item_id, user_id: str, updates: dict[str, Any]) -> dict:
        """Apply client edits; status changes must follow the workflow."""
        repo = await self.get_repository()
        item = await repo.get_item_for_user(item_id, user_id)
        if item is None:
            raise NotFoundError("Plan item not found")

        values = {k: v for k, v in updates.items() if k in EDITABLE_ITEM_FIELDS}
        if not values:
            raise ValidationError("No updatable fields provided")

        if "status" in values:
            ensure_transition(item["status"], values["status"])
        if "scheduled_time" in values:
            normalized = normalize_time(values["scheduled_time"])
            if normalized is None:
                raise ValidationError("scheduled_time must be HH:MM or HH:MM:SS")
            values["scheduled_time"] = parse_time(normalized)

        updated = await repo.update_item(item_id, values)
        if updated is None:
            raise NotFoundError("Plan item not found")
        return updated
