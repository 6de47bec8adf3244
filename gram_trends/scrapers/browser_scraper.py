"""
Creative Center 榜单抓取 - 无头浏览器 (Playwright) 主数据源

页面结构不稳定, 每个字段都按多组备选 CSS 选择器依次尝试;
行选择器全部落空时退化为直接扫描音乐链接并回溯到最近的容器元素。
浏览器会话在任何退出路径上都会关闭。
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from gram_trends.config.settings import settings
from gram_trends.models.message import TrendItem
from gram_trends.scrapers.base import BaseScraper
from gram_trends.scrapers.response_parser import extract_music_id, parse_count, synthesize_id

logger = logging.getLogger(__name__)

ROW_SELECTORS = (
    'div[class*="RankingList_item"]',
    'div[class*="ranking-item"]',
    'div[data-e2e*="ranking"]',
    'div[class*="RankingItem"]',
)

TITLE_SELECTORS = (
    '[class*="MusicInfo_title"]',
    '[class*="music-title"]',
    '[data-e2e="music-title"]',
    '[class*="MusicTitle"]',
)

AUTHOR_SELECTORS = (
    '[class*="MusicInfo_author"]',
    '[class*="author"]',
    '[data-e2e="music-author"]',
    '[class*="MusicAuthor"]',
)

USAGE_SELECTORS = (
    '[class*="Usage"]',
    '[data-e2e="music-usage"]',
    '[class*="VideoCount"]',
)

MUSIC_LINK_SELECTOR = 'a[href*="/music/"]'

_HIDE_WEBDRIVER_SCRIPT = "Object.defineProperty(navigator, 'webdriver', { get: () => false });"

BrowserFactory = Callable[[], Awaitable[Any]]


class CreativeCenterScraper(BaseScraper):
    """Drives a (remote or local) Chromium session against the ranking page."""

    name = "browser"

    def __init__(
        self,
        target_url: Optional[str] = None,
        ws_endpoint: Optional[str] = None,
        max_items: Optional[int] = None,
        browser_factory: Optional[BrowserFactory] = None,
    ):
        super().__init__(request_timeout_seconds=settings.scraper.navigation_timeout_seconds)
        self._target_url = target_url or settings.scraper.target_url
        self._ws_endpoint = settings.scraper.browser_ws_endpoint if ws_endpoint is None else ws_endpoint
        self._max_items = max(1, int(max_items or settings.scraper.max_items))
        self._browser_factory = browser_factory
        self._last_success_at: float = 0.0
        self._last_error: str = ""

    async def scrape(self) -> List[TrendItem]:
        try:
            if self._browser_factory is not None:
                browser = await self._browser_factory()
                items = await self._scrape_with_browser(browser)
            else:
                async with async_playwright() as pw:
                    browser = await self._launch(pw)
                    items = await self._scrape_with_browser(browser)
        except Exception as e:
            self._last_error = str(e)
            raise
        if items:
            self._last_success_at = time.time()
        return items

    async def _launch(self, pw):
        if self._ws_endpoint:
            logger.info("Connecting to remote browser over CDP")
            return await pw.chromium.connect_over_cdp(
                self._ws_endpoint,
                timeout=settings.scraper.navigation_timeout_seconds * 1000,
            )
        return await pw.chromium.launch(
            headless=True,
            args=[
                "--disable-blink-features=AutomationControlled",
                "--disable-dev-shm-usage",
                "--no-sandbox",
            ],
        )

    async def _scrape_with_browser(self, browser) -> List[TrendItem]:
        try:
            context = await browser.new_context(
                user_agent=settings.scraper.user_agent,
                viewport={"width": 1440, "height": 900},
                locale="en-US",
                extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
            )
            await context.add_init_script(script=_HIDE_WEBDRIVER_SCRIPT)
            page = await context.new_page()

            await page.goto(
                self._target_url,
                wait_until="networkidle",
                timeout=settings.scraper.navigation_timeout_seconds * 1000,
            )
            try:
                await page.wait_for_selector(
                    ",".join(ROW_SELECTORS),
                    timeout=settings.scraper.selector_timeout_seconds * 1000,
                )
            except PlaywrightTimeoutError:
                logger.warning("No ranking rows appeared, falling back to music-link scan")

            return await self.extract_items(page)
        finally:
            await browser.close()

    async def extract_items(self, page) -> List[TrendItem]:
        items: List[TrendItem] = []
        seen: Set[str] = set()

        rows = await page.query_selector_all(",".join(ROW_SELECTORS))
        for index, row in enumerate(rows):
            if len(items) >= self._max_items:
                break
            item = await self._extract_row(row, index, seen)
            if item:
                items.append(item)

        if not items:
            links = await page.query_selector_all(MUSIC_LINK_SELECTOR)
            for index, link in enumerate(links):
                if len(items) >= self._max_items:
                    break
                handle = await link.evaluate_handle("el => el.closest('div')")
                container = handle.as_element()
                if container is None:
                    continue
                item = await self._extract_row(container, index, seen)
                if item:
                    items.append(item)

        logger.info("Extracted %d ranking rows from page", len(items))
        return items

    async def _extract_row(self, row, index: int, seen: Set[str]) -> Optional[TrendItem]:
        try:
            link = await row.query_selector(MUSIC_LINK_SELECTOR)
            href = ""
            if link is not None:
                href = await link.get_attribute("href") or ""

            title = await _pick_text(row, TITLE_SELECTORS)
            if not title and link is not None:
                title = ((await link.text_content()) or "").strip()
            author = await _pick_text(row, AUTHOR_SELECTORS)
            usage = await _pick_text(row, USAGE_SELECTORS)

            img = await row.query_selector("img")
            cover = ""
            if img is not None:
                cover = await img.get_attribute("src") or ""
        except PlaywrightError as e:
            logger.debug("Skipping row %d: %s", index, e)
            return None

        item_id = extract_music_id(href) or synthesize_id(title, author, index)
        if item_id in seen:
            return None
        seen.add(item_id)

        return TrendItem(
            id=item_id,
            rank=index + 1,
            title=title or "Unknown",
            author=author or "Unknown",
            play_count=parse_count(usage),
            cover_url=cover,
        )

    async def health_check(self) -> Dict:
        return {
            "status": "healthy" if not self._last_error else "degraded",
            "source": self.name,
            "target_url": self._target_url,
            "remote_browser": bool(self._ws_endpoint),
            "last_success_at": self._last_success_at,
            "last_error": self._last_error,
        }


async def _pick_text(root, selectors: Sequence[str]) -> str:
    for selector in selectors:
        el = await root.query_selector(selector)
        if el is None:
            continue
        text = await el.text_content()
        if text and text.strip():
            return text.strip()
    return ""
