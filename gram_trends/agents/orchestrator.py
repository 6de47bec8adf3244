"""
TrendPipeline - 榜单采集入库流水线

采集 -> 归一化去重 -> 批量读取历史与已有标签 -> 配额内标注 -> 计算增长率
-> 当前状态 upsert + 历史快照追加 (单事务) -> 话题标签旁路采集

run() 永不向调用方抛异常, 结果通过 PipelineResult.status 表达:
success / warning (无数据、已有运行中) / error (入库失败)。
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from gram_trends.agents.acquisition_agent import TrendAcquisitionAgent
from gram_trends.agents.base import BaseAgent
from gram_trends.config.settings import settings
from gram_trends.models.message import (
    SOURCE_NONE, STATUS_ERROR, STATUS_SUCCESS, STATUS_WARNING,
    PipelineResult, TrendItem,
)
from gram_trends.scrapers.browser_scraper import CreativeCenterScraper
from gram_trends.scrapers.proxy_grid_scraper import ProxyGridScraper
from gram_trends.services.alerting import AlertNotifier
from gram_trends.services.growth import GrowthCalculator
from gram_trends.services.hashtag_ingest import HashtagIngestor
from gram_trends.services.run_recorder import MetricsRecorder
from gram_trends.services.stale_store import StaleDataStore
from gram_trends.services.tagger import AudioTagger, needs_tagging
from gram_trends.services.trend_store import TrendRepository

logger = logging.getLogger(__name__)

MAX_BATCH = 50


def normalize_trends(items: List[TrendItem], limit: int = MAX_BATCH) -> List[TrendItem]:
    """First occurrence wins, stable sort by source rank, truncate, re-rank 1..N."""
    deduped: Dict[str, TrendItem] = {}
    for item in items:
        if item.id and item.id not in deduped:
            deduped[item.id] = item
    ordered = sorted(deduped.values(), key=lambda it: it.rank)[:limit]
    return [item.with_rank(index + 1) for index, item in enumerate(ordered)]


class TrendPipeline(BaseAgent):
    """采集入库流水线, 同一进程内串行执行"""

    def __init__(
        self,
        repo: Optional[TrendRepository] = None,
        acquisition: Optional[TrendAcquisitionAgent] = None,
        tagger: Optional[AudioTagger] = None,
        growth: Optional[GrowthCalculator] = None,
        hashtags: Optional[HashtagIngestor] = None,
        recorder: Optional[MetricsRecorder] = None,
        tag_limit: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__("pipeline")
        self.repo = repo or TrendRepository()
        self.acquisition = acquisition or TrendAcquisitionAgent(
            primary=CreativeCenterScraper(),
            secondary=ProxyGridScraper(),
            stale_store=StaleDataStore(self.repo),
            notifier=AlertNotifier(),
        )
        self.tagger = tagger or AudioTagger()
        self.growth = growth or GrowthCalculator()
        self.hashtags = hashtags or HashtagIngestor(self.repo)
        self.recorder = recorder or MetricsRecorder(self.repo)
        self.tag_limit = settings.tagger.tag_limit if tag_limit is None else max(0, tag_limit)
        self._clock = clock or time.time
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def startup(self):
        await self.repo.init_db()
        await super().startup()

    async def shutdown(self):
        await self.acquisition.shutdown()
        await self.tagger.close()
        await self.hashtags.close()
        await self.repo.close()
        await super().shutdown()

    async def run(
        self,
        force_secondary: bool = False,
        use_stale_fallback: bool = False,
        trigger: str = "cron",
    ) -> PipelineResult:
        if self._lock.locked():
            logger.warning("Pipeline already running, ignoring %s trigger", trigger)
            return PipelineResult(status=STATUS_WARNING, message="Pipeline already running")

        async with self._lock:
            started = self._clock()
            try:
                result = await self._run(force_secondary, use_stale_fallback)
            except Exception as e:
                logger.error("Pipeline failed: %s", e, exc_info=True)
                result = PipelineResult(status=STATUS_ERROR, message=str(e))
            result.duration_ms = max(0, int((self._clock() - started) * 1000))

        logger.info(
            "Pipeline finished: status=%s count=%d source=%s tags=%d duration=%dms",
            result.status, result.count, result.source, result.tags_generated, result.duration_ms,
        )
        await self.recorder.record(result, trigger)
        return result

    async def _run(self, force_secondary: bool, use_stale_fallback: bool) -> PipelineResult:
        acquired = await self.acquisition.acquire(
            force_secondary=force_secondary, use_stale_fallback=use_stale_fallback,
        )
        if not acquired.items:
            return PipelineResult(
                status=STATUS_WARNING, source=acquired.source or SOURCE_NONE,
                message="No trend data acquired",
            )

        normalized = normalize_trends(acquired.items)
        if not normalized:
            return PipelineResult(
                status=STATUS_WARNING, source=acquired.source,
                message="No valid trend items after normalization",
            )

        ids = [item.id for item in normalized]
        try:
            history_map = await self.repo.get_latest_history_map(ids)
            tag_map = await self.repo.get_existing_tag_map(ids)
        except Exception as e:
            logger.error("Failed to load history/tags: %s", e, exc_info=True)
            return PipelineResult(
                status=STATUS_ERROR, source=acquired.source,
                message=f"Failed to load history: {e}",
            )

        timestamp = int(self._clock() * 1000)
        rows: List[Dict[str, Any]] = []
        tags_generated = 0

        for item in normalized:
            growth_rate = self.growth.compute_growth_rate(item, history_map.get(item.id))
            existing = tag_map.get(item.id) or {}
            genre = existing.get("genre")
            vibe = existing.get("vibe")

            if needs_tagging(genre, vibe) and tags_generated < self.tag_limit:
                tags_generated += 1
                try:
                    tags = await self.tagger.classify(item.title, item.author)
                    genre, vibe = tags.genre, tags.vibe
                except Exception as e:
                    logger.error("Tagging failed for %s, keeping existing tags: %s", item.id, e)

            row = item.to_dict()
            row.update(growth_rate=growth_rate, genre=genre, vibe=vibe)
            rows.append(row)

        try:
            await self.repo.commit_snapshot(rows, timestamp)
        except Exception as e:
            logger.error("Failed to persist snapshot: %s", e, exc_info=True)
            return PipelineResult(
                status=STATUS_ERROR, source=acquired.source, tags_generated=tags_generated,
                message=f"Persistence failed: {e}",
            )

        hashtag_result = await self._ingest_hashtags(timestamp)

        return PipelineResult(
            status=STATUS_SUCCESS,
            count=len(normalized),
            top_song=normalized[0].title,
            tags_generated=tags_generated,
            source=acquired.source,
            hashtag_ingest=hashtag_result,
        )

    async def _ingest_hashtags(self, timestamp: int) -> Dict[str, Any]:
        try:
            return await self.hashtags.ingest(timestamp)
        except Exception as e:
            logger.error("Hashtag ingest failed: %s", e)
            return {"status": "error", "message": str(e)}

    def get_circuit_state(self) -> Dict[str, Dict]:
        return self.acquisition.get_circuit_state()


# Singleton
_orchestrator: Optional[TrendPipeline] = None


def get_orchestrator() -> TrendPipeline:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = TrendPipeline()
    return _orchestrator
