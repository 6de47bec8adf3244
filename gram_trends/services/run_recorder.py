"""
流水线执行记录 - 运行健康度自省

每次执行: 更新 Prometheus 指标、进程内的 cron 执行摘要和当日聚合,
并落一行 pipeline_runs。任何记录失败都不影响流水线结果。
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from gram_trends.models.message import STATUS_ERROR, STATUS_SUCCESS, PipelineResult
from gram_trends.observability import metrics as obs
from gram_trends.services.trend_store import TrendRepository

logger = logging.getLogger(__name__)


@dataclass
class CronExecution:
    last_run: int = 0
    last_success: int = 0
    last_failure: int = 0
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    total_runs: int = 0


@dataclass
class DailyMetrics:
    date: str = ""
    executions: List[Dict[str, Any]] = field(default_factory=list)
    total_runs: int = 0
    success_count: int = 0
    failure_count: int = 0
    average_duration: float = 0.0
    average_item_count: float = 0.0


class MetricsRecorder:
    """Records the outcome of every pipeline execution."""

    def __init__(
        self,
        repo: Optional[TrendRepository] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._repo = repo
        self._clock = clock or time.time
        self._cron = CronExecution()
        self._daily = DailyMetrics(date=self._today())

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _today(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).strftime("%Y-%m-%d")

    async def record(self, result: PipelineResult, trigger: str = "cron") -> None:
        try:
            self._update_summary(result)
        except Exception as e:
            logger.error("Failed to update run summary: %s", e)

        try:
            obs.record_pipeline(
                trigger=trigger,
                status=result.status,
                latency=result.duration_ms / 1000.0,
                item_count=result.count,
                tags=result.tags_generated,
            )
        except Exception as e:
            logger.error("Failed to export pipeline metrics: %s", e)

        if self._repo is None:
            return
        try:
            await self._repo.record_pipeline_run({
                "trigger_type": trigger,
                "status": result.status,
                "source": result.source,
                "item_count": result.count,
                "tags_generated": result.tags_generated,
                "duration_ms": result.duration_ms,
                "message": result.message,
                "hashtag_ingest": result.hashtag_ingest,
                "started_at": self._now_ms() - result.duration_ms,
            })
        except Exception as e:
            logger.error("Failed to persist pipeline run: %s", e)

    def _update_summary(self, result: PipelineResult):
        now = self._now_ms()
        cron = self._cron
        cron.last_run = now
        cron.total_runs += 1
        if result.status == STATUS_ERROR:
            cron.last_failure = now
            cron.consecutive_failures += 1
            cron.consecutive_successes = 0
        else:
            cron.last_success = now
            cron.consecutive_successes += 1
            cron.consecutive_failures = 0

        today = self._today()
        if self._daily.date != today:
            self._daily = DailyMetrics(date=today)
        daily = self._daily
        daily.executions.append({
            "timestamp": now,
            "duration": result.duration_ms,
            "status": result.status,
            "item_count": result.count,
            "tags_generated": result.tags_generated,
            "source": result.source,
        })
        daily.total_runs += 1
        if result.status == STATUS_SUCCESS:
            daily.success_count += 1
        else:
            daily.failure_count += 1
        runs = len(daily.executions)
        daily.average_duration = sum(e["duration"] for e in daily.executions) / runs
        daily.average_item_count = sum(e["item_count"] for e in daily.executions) / runs

    def snapshot(self) -> Dict[str, Any]:
        if self._daily.date != self._today():
            self._daily = DailyMetrics(date=self._today())
        return {
            "cron": asdict(self._cron),
            "metrics": asdict(self._daily),
            "timestamp": self._now_ms(),
        }
