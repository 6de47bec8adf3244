"""
Tests for the cron pipeline scheduler.
"""

from unittest.mock import AsyncMock

import pytest

from gram_trends.config.settings import settings
from gram_trends.services.scheduler import PipelineScheduler


@pytest.mark.asyncio
async def test_start_schedules_next_run(monkeypatch):
    monkeypatch.setattr(settings.scheduler, "enabled", True)
    scheduler = PipelineScheduler()
    assert scheduler.next_run_time() is None

    scheduler.start(AsyncMock(), cron_expression="0 */6 * * *")
    try:
        assert scheduler.running is True
        next_run = scheduler.next_run_time()
        assert next_run is not None
        assert next_run.minute == 0
        assert next_run.hour % 6 == 0
    finally:
        scheduler.stop()

    assert scheduler.running is False
    assert scheduler.next_run_time() is None


@pytest.mark.asyncio
async def test_disabled_scheduler_does_not_start(monkeypatch):
    monkeypatch.setattr(settings.scheduler, "enabled", False)
    scheduler = PipelineScheduler()
    scheduler.start(AsyncMock())
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_job_runs_pipeline_with_cron_trigger(monkeypatch):
    monkeypatch.setattr(settings.scheduler, "enabled", True)
    pipeline = AsyncMock()
    scheduler = PipelineScheduler()
    scheduler.start(pipeline)
    try:
        await scheduler._run_pipeline()
    finally:
        scheduler.stop()

    pipeline.run.assert_awaited_once_with(trigger="cron")
