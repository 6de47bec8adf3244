"""
Proxy Grid 抓取器 - 通过数据代理服务获取榜单 (备用数据源)

POST {base}/api/search  body={"type": "tiktok", "query": "trending"}
请求头携带 x-grid-secret 共享密钥; 响应可能是 JSON 记录数组, 也可能是原始 HTML。
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

from gram_trends.config.settings import settings
from gram_trends.models.message import TrendItem
from gram_trends.scrapers.base import BaseScraper
from gram_trends.scrapers.response_parser import HtmlResponseParser

logger = logging.getLogger(__name__)


class ProxyGridNotConfiguredError(RuntimeError):
    pass


class ProxyGridRequestError(RuntimeError):
    def __init__(self, message: str, status_code: int = 0, endpoint: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


def backoff_delay_ms(attempt: int, base_ms: int = 1000, max_ms: int = 10000) -> int:
    """min(base * 2^attempt, max), attempt is 0-based."""
    return min(base_ms * (2 ** max(0, attempt)), max_ms)


class ProxyGridScraper(BaseScraper):
    """Proxy Grid 搜索接口客户端"""

    name = "proxy_grid"

    def __init__(
        self,
        base_url: Optional[str] = None,
        secret: Optional[str] = None,
        parser: Optional[HtmlResponseParser] = None,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__(request_timeout_seconds=settings.proxy_grid.request_timeout_seconds)
        cfg = settings.proxy_grid
        self._base_url = (base_url if base_url is not None else cfg.base_url).rstrip("/")
        self._secret = cfg.secret if secret is None else secret
        self._parser = parser or HtmlResponseParser(max_items=settings.scraper.max_items)
        self._session = session
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self._max_retries = max(0, cfg.max_retries)
        self._cache_ttl = cfg.cache_ttl_seconds
        self._cache: Dict[str, Tuple[float, List[TrendItem]]] = {}

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}{settings.proxy_grid.search_endpoint}"

    async def scrape(self, force: bool = False, query: str = "trending") -> List[TrendItem]:
        if not self.configured:
            raise ProxyGridNotConfiguredError("PROXY_GRID_SECRET not configured")

        cache_key = f"{settings.scraper.platform}:{query}"
        if not force:
            cached = self._cache.get(cache_key)
            if cached and cached[0] > self._clock():
                logger.info("Proxy Grid cache hit for %s (%d items)", cache_key, len(cached[1]))
                return list(cached[1])

        items = await self._fetch_with_retry(query)
        if items:
            self._cache[cache_key] = (self._clock() + self._cache_ttl, list(items))
        logger.info("Proxy Grid scraped %d items", len(items))
        return items

    async def _fetch_with_retry(self, query: str) -> List[TrendItem]:
        cfg = settings.scraper
        attempts = self._max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                return await self._fetch_once(query)
            except (ProxyGridRequestError, aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
                last_error = e
                if attempt + 1 >= attempts:
                    logger.error("Proxy Grid attempt %d/%d failed: %s", attempt + 1, attempts, e)
                    break
                delay_ms = backoff_delay_ms(attempt, cfg.retry_base_delay_ms, cfg.retry_max_delay_ms)
                logger.warning(
                    "Proxy Grid attempt %d/%d failed: %s, retrying in %dms",
                    attempt + 1, attempts, e, delay_ms,
                )
                await self._sleep(delay_ms / 1000.0)

        raise last_error

    async def _fetch_once(self, query: str) -> List[TrendItem]:
        session = await self._get_session()
        headers = {
            "Content-Type": "application/json",
            "x-grid-secret": self._secret,
        }
        body = {"type": settings.scraper.platform, "query": query}

        async with session.post(self.endpoint, json=body, headers=headers) as resp:
            if resp.status == 408 or resp.headers.get("x-timeout", "").lower() == "true":
                raise ProxyGridRequestError(
                    "Proxy Grid upstream timed out", status_code=resp.status, endpoint=self.endpoint,
                )
            if resp.status >= 400:
                text = await resp.text()
                raise ProxyGridRequestError(
                    f"Proxy Grid error {resp.status}: {text[:200]}",
                    status_code=resp.status,
                    endpoint=self.endpoint,
                )
            content_type = resp.headers.get("Content-Type", "")
            text = await resp.text()

        return self._parser.parse_response(content_type, text)

    async def health_check(self) -> Dict:
        if not self.configured:
            return {"status": "unconfigured", "source": self.name}
        return {
            "status": "configured",
            "source": self.name,
            "endpoint": self.endpoint,
            "cached_keys": len(self._cache),
        }
