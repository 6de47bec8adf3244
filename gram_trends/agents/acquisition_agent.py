"""
TrendAcquisitionAgent - 多数据源采集协调

浏览器 (最多 3 次, 指数退避) -> Proxy Grid (一次, 重试在 HTTP 层) -> 过期数据 -> 空列表
两个数据源各自一个熔断器; 所有降级路径都会异步告警。acquire() 永不抛异常。
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

from gram_trends.agents.base import BaseAgent
from gram_trends.config.settings import settings
from gram_trends.models.message import (
    SOURCE_BROWSER, SOURCE_NONE, SOURCE_PROXY_GRID, SOURCE_STALE,
    AcquisitionResult, TrendItem,
)
from gram_trends.observability import metrics as obs
from gram_trends.scrapers.base import BaseScraper
from gram_trends.scrapers.proxy_grid_scraper import ProxyGridScraper, backoff_delay_ms
from gram_trends.services.alerting import AlertNotifier
from gram_trends.services.circuit_breaker import CircuitBreaker, CircuitOpenError
from gram_trends.services.stale_store import StaleDataStore

logger = logging.getLogger(__name__)


def build_breaker(name: str, clock: Optional[Callable[[], float]] = None) -> CircuitBreaker:
    return CircuitBreaker(
        name,
        threshold=settings.scraper.circuit_breaker_failure_threshold,
        timeout_seconds=settings.scraper.circuit_breaker_open_seconds,
        clock=clock,
    )


class TrendAcquisitionAgent(BaseAgent):
    """多数据源采集 Agent"""

    def __init__(
        self,
        primary: BaseScraper,
        secondary: ProxyGridScraper,
        stale_store: StaleDataStore,
        notifier: Optional[AlertNotifier] = None,
        primary_breaker: Optional[CircuitBreaker] = None,
        secondary_breaker: Optional[CircuitBreaker] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__("acquisition")
        self._primary = primary
        self._secondary = secondary
        self._stale = stale_store
        self._notifier = notifier or AlertNotifier()
        self._clock = clock or time.monotonic
        self.primary_breaker = primary_breaker or build_breaker(SOURCE_BROWSER, clock)
        self.secondary_breaker = secondary_breaker or build_breaker(SOURCE_PROXY_GRID, clock)
        self._sleep = sleep or asyncio.sleep
        self._max_attempts = max(1, settings.scraper.retry_max_attempts)

    async def scrape(self, force_secondary: bool = False, use_stale_fallback: bool = False) -> List[TrendItem]:
        result = await self.acquire(force_secondary=force_secondary, use_stale_fallback=use_stale_fallback)
        return result.items

    async def acquire(self, force_secondary: bool = False, use_stale_fallback: bool = False) -> AcquisitionResult:
        try:
            return await self._acquire(force_secondary, use_stale_fallback)
        except Exception as e:
            logger.error("Acquisition failed unexpectedly: %s", e, exc_info=True)
            return AcquisitionResult(items=[], source=SOURCE_NONE)

    async def _acquire(self, force_secondary: bool, use_stale_fallback: bool) -> AcquisitionResult:
        if use_stale_fallback:
            stale = await self._stale.get_stale()
            if stale:
                logger.info("Serving %d stale items on request", len(stale))
                return AcquisitionResult(items=stale, source=SOURCE_STALE)

        if not force_secondary:
            try:
                self.primary_breaker.check()
            except CircuitOpenError as e:
                logger.warning("%s, skipping to Proxy Grid", e)
            else:
                items = await self._try_primary()
                if items:
                    return AcquisitionResult(items=items, source=SOURCE_BROWSER)

        return await self._try_secondary(force=force_secondary)

    async def _try_primary(self) -> List[TrendItem]:
        cfg = settings.scraper
        for attempt in range(self._max_attempts):
            if attempt > 0 and not self.primary_breaker.can_execute():
                logger.warning("Browser circuit opened mid-retry, giving up on browser")
                break

            started = self._clock()
            try:
                items = await self._primary.scrape()
                error = None
            except Exception as e:
                items, error = [], e
            latency = max(0.0, self._clock() - started)

            if items:
                self.primary_breaker.record_success()
                obs.record_scrape(SOURCE_BROWSER, "success", latency)
                obs.record_scrape_items(SOURCE_BROWSER, len(items))
                await self._stale.remember_and_persist(items)
                logger.info("Browser scrape succeeded on attempt %d: %d items", attempt + 1, len(items))
                return items

            self.primary_breaker.record_failure()
            obs.record_scrape(SOURCE_BROWSER, "error" if error else "empty", latency)

            if attempt + 1 < self._max_attempts:
                delay_ms = backoff_delay_ms(attempt, cfg.retry_base_delay_ms, cfg.retry_max_delay_ms)
                logger.warning(
                    "Browser attempt %d/%d failed (%s), retrying in %dms",
                    attempt + 1, self._max_attempts, error or "no items", delay_ms,
                )
                await self._sleep(delay_ms / 1000.0)
            else:
                logger.error(
                    "Browser attempt %d/%d failed (%s)",
                    attempt + 1, self._max_attempts, error or "no items",
                )
        return []

    async def _try_secondary(self, force: bool) -> AcquisitionResult:
        if not self._secondary.configured:
            logger.error("Proxy Grid not configured, no secondary source available")
            self._notifier.notify("TikTok scrape failed: Proxy Grid not configured.")
            obs.record_fallback(SOURCE_NONE)
            return AcquisitionResult(items=[], source=SOURCE_NONE)

        if not self.secondary_breaker.can_execute():
            logger.error("Proxy Grid circuit open: %s", self.secondary_breaker.get_state())
            stale = await self._stale.get_stale()
            if stale:
                return self._serve_stale(stale)
            self._notifier.notify("TikTok scrape failed: All circuits open.")
            obs.record_fallback(SOURCE_NONE)
            return AcquisitionResult(items=[], source=SOURCE_NONE)

        started = self._clock()
        try:
            items = await self._secondary.scrape(force=force)
            error = None
        except Exception as e:
            items, error = [], e
        latency = max(0.0, self._clock() - started)

        if items:
            self.secondary_breaker.record_success()
            obs.record_scrape(SOURCE_PROXY_GRID, "success", latency)
            obs.record_scrape_items(SOURCE_PROXY_GRID, len(items))
            obs.record_fallback(SOURCE_PROXY_GRID)
            await self._stale.remember_and_persist(items)
            logger.warning("Served %d items from Proxy Grid", len(items))
            self._notifier.notify(f"TikTok scrape used Proxy Grid fallback. count={len(items)}")
            return AcquisitionResult(items=items, source=SOURCE_PROXY_GRID)

        self.secondary_breaker.record_failure()
        obs.record_scrape(SOURCE_PROXY_GRID, "error" if error else "empty", latency)
        logger.error("Proxy Grid scrape failed: %s", error or "no items")

        stale = await self._stale.get_stale()
        if stale:
            return self._serve_stale(stale)

        logger.error("All acquisition methods exhausted")
        self._notifier.notify("TikTok scrape failed: All methods exhausted.")
        obs.record_fallback(SOURCE_NONE)
        return AcquisitionResult(items=[], source=SOURCE_NONE)

    def _serve_stale(self, stale: List[TrendItem]) -> AcquisitionResult:
        logger.warning("Falling back to stale data: %d items", len(stale))
        self._notifier.notify(f"TikTok scrape failed, using stale data. count={len(stale)}")
        obs.record_fallback(SOURCE_STALE)
        return AcquisitionResult(items=stale, source=SOURCE_STALE)

    def get_circuit_state(self) -> Dict[str, Dict]:
        return {
            SOURCE_BROWSER: self.primary_breaker.get_state(),
            SOURCE_PROXY_GRID: self.secondary_breaker.get_state(),
        }

    async def health_check(self) -> Dict[str, Dict]:
        return {
            SOURCE_BROWSER: await self._primary.health_check(),
            SOURCE_PROXY_GRID: await self._secondary.health_check(),
        }

    async def shutdown(self):
        await self._primary.close()
        await self._secondary.close()
        await self._notifier.close()
        await super().shutdown()
