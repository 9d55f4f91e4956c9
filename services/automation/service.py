"""
Automation Service

Drives plan items through the pipeline:

    topic (Perplexity) -> script (OpenAI) -> approval -> video (Poyo)
        -> distribution (Upload-Post)

Every step works on one item at a time and persists its result before the
next step looks at it, so the periodic jobs in scheduler.py can run in any
order. Batch methods log per-item failures and carry on.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Optional

from core.circuit_breaker import CircuitBreakerOpen
from core.config import get_config
from core.errors import DomainError, NotFoundError, ProviderError, ValidationError
from services.plans.repository import PlanRepository
from services.plans.scheduling import is_trigger_due, local_now, minutes_until, parse_date, trigger_passed
from services.plans.service import PlanService, friendly_error_message
from services.plans.state import ItemStatus, ScriptStatus, TriggerMode, ensure_transition
from services.publisher.distribution import DistributionService
from services.research.perplexity_client import PerplexityClient, get_perplexity_client
from services.scripts.openai_client import ScriptRequest
from services.scripts.writer import ScriptWriter
from services.video_generation.service import VideoService

logger = logging.getLogger(__name__)

RECENT_SCRIPTS_LIMIT = 5
RECENT_SCRIPT_PREVIEW = 200
DEFAULT_CATEGORY = "Lifestyle"
# Minutes before its slot that a completed item is handed to distribution
DISTRIBUTION_LEAD_MINUTES = 1
AUTOMATIC_TRIGGERS = (TriggerMode.DAILY.value, TriggerMode.TIME_BASED.value)


def anti_repeat_hint(recent_scripts: list[str]) -> Optional[str]:
    previews = [s[:RECENT_SCRIPT_PREVIEW] for s in recent_scripts if s]
    if not previews:
        return None
    return "Avoid repeating or slightly rephrasing these recent scripts or angles:\n- " + "\n- ".join(previews)


def is_transient(error: BaseException) -> bool:
    """Provider failures that leave an item worth retrying on the next run."""
    if isinstance(error, CircuitBreakerOpen):
        return True
    return isinstance(error, ProviderError) and error.is_retryable


class AutomationService:
    """
    Usage:
        automation = AutomationService()

        await automation.process_scheduled_plans()
        await automation.generate_scripts_for_ready_items()
        await automation.generate_videos_for_approved_items()
        await automation.check_video_status_and_schedule_distribution()
    """

    def __init__(
        self,
        plans: Optional[PlanService] = None,
        writer: Optional[ScriptWriter] = None,
        research: Optional[PerplexityClient] = None,
        videos: Optional[VideoService] = None,
        distribution: Optional[DistributionService] = None,
        config=None,
    ):
        self.plans = plans or PlanService()
        self._writer = writer
        self._research = research
        self._videos = videos
        self._distribution = distribution
        self.config = config or get_config()

    @property
    def writer(self) -> ScriptWriter:
        if self._writer is None:
            self._writer = ScriptWriter()
        return self._writer

    @property
    def research(self) -> PerplexityClient:
        if self._research is None:
            self._research = get_perplexity_client()
        return self._research

    @property
    def videos(self) -> VideoService:
        if self._videos is None:
            self._videos = VideoService()
        return self._videos

    @property
    def distribution(self) -> DistributionService:
        if self._distribution is None:
            self._distribution = DistributionService()
        return self._distribution

    async def repository(self) -> PlanRepository:
        return await self.plans.get_repository()

    async def _owned_item(self, item_id, user_id: str) -> dict:
        repo = await self.repository()
        item = await repo.get_item_for_user(item_id, user_id)
        if item is None:
            raise NotFoundError("Plan item not found")
        return item

    # -- triggers ------------------------------------------------------------

    async def process_scheduled_plans(self, now: Optional[datetime] = None) -> int:
        """
        Fire automatic plans.

        Daily plans fire once, inside the window after their trigger time.
        Time-based plans are processed on every run.

        Returns:
            Number of plans processed
        """
        repo = await self.repository()
        window = self.config.automation.trigger_window_minutes
        fired = 0

        for plan in await repo.enabled_plans(triggers=AUTOMATIC_TRIGGERS):
            timezone = plan.get("timezone")
            time_based = plan.get("auto_schedule_trigger") == TriggerMode.TIME_BASED.value
            if not time_based and not is_trigger_due(plan.get("trigger_time"), timezone, window, now):
                continue
            fired += 1
            today = local_now(timezone, now).date()
            logger.info(f"[Automation] Trigger fired for plan {plan['id']} ({plan['name']}), date {today}")
            try:
                await self._run_plan_day(plan, today)
            except Exception as e:
                logger.error(f"[Automation] Error processing plan {plan['id']}: {e}")
        return fired

    async def _plans_past_trigger(self, now: Optional[datetime] = None, auto_create_only: bool = False) -> list:
        """(plan, plan-local date) for automatic plans whose trigger time has passed today."""
        repo = await self.repository()
        due = []
        for plan in await repo.enabled_plans(triggers=AUTOMATIC_TRIGGERS):
            if auto_create_only and not plan.get("auto_create"):
                continue
            if trigger_passed(plan.get("trigger_time"), plan.get("timezone"), now):
                due.append((plan, local_now(plan.get("timezone"), now).date()))
        return due

    async def _run_plan_day(self, plan: dict, today: date, include_videos: Optional[bool] = None) -> dict:
        user_id = plan["user_id"]
        summary = {"topics": 0, "scripts": 0, "videos": 0}

        if plan.get("auto_research", True):
            summary["topics"] = await self.generate_topics_for_date(plan["id"], today, user_id)
        summary["scripts"] = await self.generate_scripts_for_date(plan["id"], today, user_id)

        run_videos = plan.get("auto_create") if include_videos is None else include_videos
        if run_videos:
            summary["videos"] = await self.generate_videos_for_date(plan["id"], today, user_id)

        logger.info(f"[Automation] Plan {plan['id']} {today}: {summary}")
        return summary

    async def process_plan(self, plan_id, user_id: str, now: Optional[datetime] = None) -> dict:
        """Run today's topics, scripts and videos for one plan on demand."""
        plan = await self.plans.get_plan(plan_id, user_id)
        today = local_now(plan.get("timezone"), now).date()
        return await self._run_plan_day(plan, today, include_videos=True)

    async def generate_topics_for_date(self, plan_id, day, user_id: str) -> int:
        """Generate topics for the plan's pending items on ``day``."""
        repo = await self.repository()
        items = await repo.items_for_date(plan_id, parse_date(day), ItemStatus.PENDING.value, limit=50)
        done = 0
        for item in items:
            try:
                await self.plans.generate_topic_for_item(item["id"], user_id)
                done += 1
            except Exception as e:
                logger.error(f"[Automation] Error generating topic for item {item['id']}: {e}")
        return done

    # -- scripts -------------------------------------------------------------

    async def generate_scripts_for_date(self, plan_id, day, user_id: str) -> int:
        repo = await self.repository()
        items = await repo.items_for_date(plan_id, parse_date(day), ItemStatus.READY.value, limit=50)
        done = 0
        for item in items:
            if item.get("script"):
                continue
            if await self._script_or_fail(item["id"], user_id) == "processed":
                done += 1
        return done

    async def generate_scripts_for_ready_items(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Write scripts for today's ready items of plans whose trigger time has passed."""
        repo = await self.repository()
        budget = self.config.automation.batch_size
        counts = {"processed": 0, "failed": 0, "skipped": 0}

        for plan, today in await self._plans_past_trigger(now):
            if budget <= 0:
                break
            items = await repo.items_for_date(plan["id"], today, ItemStatus.READY.value, limit=budget)
            for item in items:
                if item.get("script"):
                    continue
                budget -= 1
                counts[await self._script_or_fail(item["id"], plan["user_id"])] += 1

        if any(counts.values()):
            logger.info(f"[Script Generation] Ready items: {counts}")
        return counts

    async def _script_or_fail(self, item_id, user_id: str) -> str:
        """
        Returns:
            "processed", "failed" (provider failure, item marked failed) or
            "skipped" (item no longer fits, left untouched)
        """
        try:
            await self.generate_script_for_item(item_id, user_id)
            return "processed"
        except DomainError as e:
            logger.info(f"[Script Generation] Skipping item {item_id}: {e}")
            return "skipped"
        except (ProviderError, CircuitBreakerOpen, asyncio.TimeoutError) as e:
            logger.error(f"[Script Generation] Failed for item {item_id}: {e}")
            repo = await self.repository()
            await repo.update_item(
                item_id,
                {
                    "status": ItemStatus.FAILED.value,
                    "error_message": friendly_error_message(e, "Script generation failed"),
                },
                expected_status=ItemStatus.READY.value,
            )
            return "failed"

    async def _enrich_research(self, item: dict, topic: str) -> dict:
        """Fill in missing research via Perplexity; failures keep what we have."""
        research = item.get("research_data") or {}
        if research.get("Description") and research.get("UsefulTips"):
            return research

        category = item.get("category") or research.get("Category") or DEFAULT_CATEGORY
        try:
            result = await self.research.research_topic(topic, category)
        except (ProviderError, CircuitBreakerOpen) as e:
            logger.error(f"[Script Generation] Research fallback failed, continuing with existing data: {e}")
            return research

        repo = await self.repository()
        enriched = result.to_dict()
        await repo.update_item(item["id"], {
            "description": result.description,
            "why_important": result.why_it_matters,
            "useful_tips": result.useful_tips,
            "category": result.category or item.get("category"),
            "research_data": enriched,
        })
        item.update(
            description=result.description,
            why_important=result.why_it_matters,
            useful_tips=result.useful_tips,
            category=result.category or item.get("category"),
        )
        return enriched

    async def generate_script_for_item(self, item_id, user_id: str) -> dict:
        """
        Write the script for a ``ready`` item.

        Auto-approve plans go straight to approved (and, with auto-create,
        on to video generation); others wait in draft for review.
        """
        item = await self._owned_item(item_id, user_id)
        if item["status"] != ItemStatus.READY.value:
            raise ValidationError("Item must be ready to generate script")

        research = item.get("research_data") or {}
        topic = item.get("topic") or research.get("Idea")
        if not topic:
            raise ValidationError("No topic available for script generation")

        research = await self._enrich_research(item, topic)

        repo = await self.repository()
        recent = await repo.recent_scripts(item["plan_id"], exclude_item_id=item["id"], limit=RECENT_SCRIPTS_LIMIT)

        request = ScriptRequest(
            idea=topic,
            description=item.get("description") or research.get("Description"),
            why_it_matters=item.get("why_important") or research.get("WhyItMatters"),
            useful_tips=item.get("useful_tips") or research.get("UsefulTips"),
            category=item.get("category") or research.get("Category") or DEFAULT_CATEGORY,
            extra_instructions=anti_repeat_hint(recent),
        )
        result = await self.writer.generate(request, user_id)
        logger.info(f"[Script Generation] Generated script for '{topic}' ({result.tokens_used} tokens)")

        plan = item.get("plan") or {}
        auto_approve = bool(plan.get("auto_approve"))
        status = ItemStatus.APPROVED if auto_approve else ItemStatus.DRAFT
        script_status = ScriptStatus.APPROVED if auto_approve else ScriptStatus.DRAFT
        ensure_transition(item["status"], status.value)

        updated = await repo.update_item(
            item_id,
            {
                "script": result.script,
                "script_status": script_status.value,
                "status": status.value,
                "error_message": None,
            },
            expected_status=ItemStatus.READY.value,
        )
        if updated is None:
            raise ValidationError("Item changed while its script was being written")

        if auto_approve and plan.get("auto_create"):
            logger.info(f"[Script Generation] Auto-approved item {item_id}, starting video generation")
            try:
                await self.generate_video_for_item(item_id, user_id)
            except Exception as e:
                logger.error(f"[Script Generation] Immediate video generation failed for item {item_id}: {e}")

        return updated

    async def approve_script(self, item_id, user_id: str) -> dict:
        item = await self._owned_item(item_id, user_id)
        if item.get("script_status") != ScriptStatus.DRAFT.value:
            raise ValidationError("Only draft scripts can be approved")
        ensure_transition(item["status"], ItemStatus.APPROVED.value)

        repo = await self.repository()
        return await repo.update_item(item_id, {
            "script_status": ScriptStatus.APPROVED.value,
            "status": ItemStatus.APPROVED.value,
        })

    async def reject_script(self, item_id, user_id: str) -> dict:
        """Drop the draft script and send the item back for a rewrite."""
        item = await self._owned_item(item_id, user_id)
        if item.get("script_status") != ScriptStatus.DRAFT.value:
            raise ValidationError("Only draft scripts can be rejected")
        ensure_transition(item["status"], ItemStatus.READY.value)

        repo = await self.repository()
        return await repo.update_item(item_id, {
            "script_status": ScriptStatus.REJECTED.value,
            "script": None,
            "status": ItemStatus.READY.value,
        })

    # -- videos --------------------------------------------------------------

    async def generate_video_for_item(self, item_id, user_id: str) -> Optional[dict]:
        """
        Submit the video for an approved item.

        Returns:
            The updated item, or None when another run already claimed it
        """
        item = await self._owned_item(item_id, user_id)
        if item.get("video_id"):
            logger.info(f"[Video Generation] Item {item_id} already has video {item['video_id']}, skipping")
            return item

        if item["status"] != ItemStatus.APPROVED.value or item.get("script_status") != ScriptStatus.APPROVED.value:
            raise ValidationError("Item must be approved to generate video")
        if not item.get("script"):
            raise ValidationError("Item must have a script")

        repo = await self.repository()
        if await repo.claim_item_for_video(item_id) is None:
            logger.info(f"[Video Generation] Item {item_id} was already claimed, skipping")
            return None

        try:
            video = await self.videos.request_video(
                user_id,
                item.get("topic"),
                item["script"],
                plan_item_id=item_id,
            )
        except Exception as e:
            if is_transient(e):
                logger.warning(f"[Video Generation] Transient failure for item {item_id}, will retry: {e}")
                await repo.update_item(
                    item_id,
                    {"status": ItemStatus.APPROVED.value, "error_message": str(e)},
                    expected_status=ItemStatus.GENERATING.value,
                )
            else:
                await repo.update_item(
                    item_id,
                    {"status": ItemStatus.FAILED.value, "error_message": str(e)},
                    expected_status=ItemStatus.GENERATING.value,
                )
            raise

        updated = await repo.attach_video(item_id, video["id"])
        if updated is None:
            logger.warning(f"[Video Generation] Item {item_id} left generating before video {video['id']} was attached")
            return None
        logger.info(f"[Video Generation] Started video {video['id']} for item {item_id}")
        return updated

    async def generate_videos_for_date(self, plan_id, day, user_id: str) -> int:
        repo = await self.repository()
        items = await repo.items_for_date(plan_id, parse_date(day), ItemStatus.APPROVED.value, limit=50)
        started = 0
        for item in items:
            if item.get("video_id") or item.get("script_status") != ScriptStatus.APPROVED.value:
                continue
            try:
                if await self.generate_video_for_item(item["id"], user_id):
                    started += 1
            except Exception as e:
                logger.error(f"[Video Generation] Failed for item {item['id']}: {e}")
        return started

    async def generate_videos_for_approved_items(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Start videos for today's approved items of auto-create plans whose trigger time has passed."""
        repo = await self.repository()
        budget = self.config.automation.batch_size
        counts = {"started": 0, "skipped": 0, "failed": 0}

        for plan, today in await self._plans_past_trigger(now, auto_create_only=True):
            if budget <= 0:
                break
            items = await repo.items_for_date(plan["id"], today, ItemStatus.APPROVED.value, limit=budget)
            for item in items:
                if item.get("video_id") or item.get("script_status") != ScriptStatus.APPROVED.value:
                    continue
                budget -= 1
                try:
                    if await self.generate_video_for_item(item["id"], plan["user_id"]):
                        counts["started"] += 1
                    else:
                        counts["skipped"] += 1
                except Exception as e:
                    counts["failed"] += 1
                    logger.error(f"[Video Generation] Failed for item {item['id']}: {e}")

        if any(counts.values()):
            logger.info(f"[Video Generation] Approved items: {counts}")
        return counts


    # -- distribution --------------------------------------------------------

    async def check_video_status_and_schedule_distribution(self, now: Optional[datetime] = None) -> dict:
        """Refresh generating videos, queue due items for posting, then follow pending uploads."""
        summary = {
            "videos": await self.videos.refresh_generating_videos(),
            "scheduled": await self.schedule_due_distributions(now),
            "uploads": await self.distribution.check_pending_upload_status(),
        }
        return summary

    async def schedule_due_distributions(self, now: Optional[datetime] = None) -> int:
        repo = await self.repository()
        items = await repo.items_ready_for_distribution(self.config.automation.batch_size)
        scheduled = 0

        for item in items:
            plan = item.get("plan") or {}
            remaining = minutes_until(item["scheduled_date"], item.get("scheduled_time"), plan.get("timezone"), now)
            if remaining is not None and remaining > DISTRIBUTION_LEAD_MINUTES:
                continue

            try:
                await self.distribution.schedule_distribution(item["id"], plan["user_id"])
                scheduled += 1
            except DomainError as e:
                logger.warning(f"[Distribution] Item {item['id']} cannot be distributed: {e}")
                await repo.update_item(
                    item["id"],
                    {"status": ItemStatus.FAILED.value, "error_message": str(e)},
                    expected_status=ItemStatus.COMPLETED.value,
                )
            except Exception as e:
                if not is_transient(e):
                    await repo.update_item(
                        item["id"],
                        {"status": ItemStatus.FAILED.value, "error_message": str(e)},
                        expected_status=ItemStatus.COMPLETED.value,
                    )
                logger.error(f"[Distribution] Error scheduling item {item['id']}: {e}")
        return scheduled
