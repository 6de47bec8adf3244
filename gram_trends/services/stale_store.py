"""
过期数据兜底 - 所有实时数据源都失败时返回最近一次入库的榜单
"""

import logging
from typing import List, Optional

from gram_trends.models.message import TrendItem
from gram_trends.services.trend_store import TrendRepository

logger = logging.getLogger(__name__)


def rerank(items: List[TrendItem]) -> List[TrendItem]:
    """Dense 1..N ranks following list order."""
    return [item.with_rank(index + 1) for index, item in enumerate(items)]


class StaleDataStore:
    """
    先读数据库中的当前状态表, 读取失败时退回进程内最近一次成功采集的副本。
    """

    def __init__(self, repo: Optional[TrendRepository] = None, limit: int = 50):
        self._repo = repo
        self._limit = limit
        self._last_good: List[TrendItem] = []

    def remember(self, items: List[TrendItem]):
        if items:
            self._last_good = list(items[: self._limit])

    async def remember_and_persist(self, items: List[TrendItem]):
        self.remember(items)
        if self._repo is None or not items:
            return
        try:
            await self._repo.cache_trends(items)
        except Exception as e:
            logger.error("Failed to cache results: %s", e)

    async def get_stale(self) -> List[TrendItem]:
        if self._repo is not None:
            try:
                items = await self._repo.get_stale_trends(limit=self._limit)
                if items:
                    return rerank(items)
            except Exception as e:
                logger.error("Stale data read failed, using in-memory copy: %s", e)
        return rerank(self._last_good)
