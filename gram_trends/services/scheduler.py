"""
定时调度服务 - APScheduler 管理
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from gram_trends.config.settings import settings

logger = logging.getLogger(__name__)

JOB_ID = "trend_pipeline"


class PipelineScheduler:
    """定时调度管理器"""

    def __init__(self):
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._pipeline = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self, pipeline, cron_expression: Optional[str] = None):
        if not settings.scheduler.enabled:
            logger.info("Scheduler disabled")
            return

        self._pipeline = pipeline
        self._scheduler = AsyncIOScheduler(timezone=settings.scheduler.timezone)
        expr = cron_expression or settings.scheduler.cron_expression
        self._scheduler.add_job(
            self._run_pipeline,
            CronTrigger.from_crontab(expr, timezone=settings.scheduler.timezone),
            id=JOB_ID,
            name="TikTok audio trend ingestion",
            misfire_grace_time=settings.scheduler.misfire_grace_time,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Pipeline scheduler started (%s)", expr)

    async def _run_pipeline(self):
        """Execute the pipeline for the cron trigger."""
        if not self._pipeline:
            return
        try:
            logger.info("Scheduled pipeline starting")
            result = await self._pipeline.run(trigger="cron")
            logger.info("Scheduled pipeline finished: %s", result.status)
        except Exception as e:
            logger.error("Scheduled pipeline failed: %s", e, exc_info=True)

    def next_run_time(self):
        if not self._scheduler:
            return None
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    def stop(self):
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Pipeline scheduler stopped")
        self._scheduler = None
