"""
话题标签旁路采集 - 独立于主流水线, 失败不影响主结果
"""

import logging
from typing import Any, Dict, Optional

import aiohttp

from gram_trends.config.settings import settings
from gram_trends.services.trend_store import TrendRepository

logger = logging.getLogger(__name__)


class HashtagIngestor:
    """GET 外部话题接口并 upsert 到 hashtags 表"""

    def __init__(
        self,
        repo: TrendRepository,
        api_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._repo = repo
        self.api_url = settings.hashtag.api_url if api_url is None else api_url
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=settings.hashtag.timeout_seconds),
            )
        return self._session

    async def ingest(self, timestamp: int) -> Dict[str, Any]:
        if not self.api_url:
            return {"status": "skipped"}

        try:
            session = await self._get_session()
            async with session.get(
                self.api_url, headers={"User-Agent": settings.hashtag.user_agent},
            ) as resp:
                if resp.status >= 400:
                    logger.warning("Hashtag API returned %d", resp.status)
                    return {"status": "error", "code": resp.status}
                payload = await resp.json(content_type=None)

            hashtags = payload.get("hashtags") if isinstance(payload, dict) else None
            if not hashtags:
                return {"status": "empty"}

            count = await self._repo.upsert_hashtags(
                [tag for tag in hashtags if isinstance(tag, dict)], timestamp,
            )
            logger.info("Hashtag ingest stored %d tags", count)
            return {"status": "success", "count": count}
        except Exception as e:
            logger.error("Hashtag ingest failed: %s", e)
            return {"status": "error", "message": str(e)}

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
