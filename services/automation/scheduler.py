"""
Automation Scheduler

Background worker that runs each pipeline job on its own fixed interval.
One asyncio task per job; a failing run is logged and the loop continues.
"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from core.config import get_config
from core.database import close_pool

from .service import AutomationService

logger = logging.getLogger(__name__)


@dataclass
class Job:
    name: str
    interval: float  # seconds
    run: Callable[[], Awaitable[object]]


class AutomationScheduler:
    """
    Periodic driver for AutomationService.

    Handles:
    - Firing daily plan triggers
    - Writing scripts for ready items
    - Submitting videos for approved items
    - Refreshing generating videos
    - Scheduling distribution and following uploads
    - Sending deferred posts when they fall due
    """

    def __init__(self, automation: Optional[AutomationService] = None, config=None):
        self.config = config or get_config()
        self.automation = automation or AutomationService(config=self.config)
        self._running = False
        self._tasks: list[asyncio.Task] = []

    def jobs(self) -> list[Job]:
        intervals = self.config.automation
        automation = self.automation
        return [
            Job("scheduled-plans", intervals.scheduled_plans_interval, automation.process_scheduled_plans),
            Job("scripts", intervals.script_generation_interval, automation.generate_scripts_for_ready_items),
            Job("videos", intervals.video_generation_interval, automation.generate_videos_for_approved_items),
            Job(
                "distribution",
                intervals.distribution_interval,
                automation.check_video_status_and_schedule_distribution,
            ),
            Job(
                "send-posts",
                self.config.distribution.send_interval_minutes * 60,
                automation.distribution.send_scheduled_posts,
            ),
            Job("video-refresh", intervals.video_refresh_interval, automation.videos.refresh_generating_videos),
        ]

    async def _loop(self, job: Job):
        logger.info(f"[Scheduler] Job '{job.name}' every {job.interval}s")
        while self._running:
            try:
                await job.run()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[Scheduler] Job '{job.name}' failed: {e}")
            await asyncio.sleep(job.interval)

    def start(self) -> list[asyncio.Task]:
        """Start one task per job on the running loop."""
        self._running = True
        self._tasks = [asyncio.create_task(self._loop(job), name=job.name) for job in self.jobs()]
        logger.info(f"[Scheduler] Started {len(self._tasks)} jobs")
        return self._tasks

    async def stop(self):
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("[Scheduler] Stopped")

    @property
    def running(self) -> bool:
        return self._running


async def run_worker():
    """Run the scheduler until SIGINT/SIGTERM."""
    scheduler = AutomationScheduler()
    stop_event = asyncio.Event()

    def handle_signal():
        logger.info("Shutdown signal received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal)

    scheduler.start()
    await stop_event.wait()
    await scheduler.stop()
    await close_pool()
    logger.info("Automation worker stopped")
