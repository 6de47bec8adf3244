"""
Proxy Grid fetcher tests (offline with mocked aiohttp session).
"""

import json

import aiohttp
import pytest

from gram_trends.config.settings import settings
from gram_trends.scrapers.proxy_grid_scraper import (
    ProxyGridNotConfiguredError,
    ProxyGridRequestError,
    ProxyGridScraper,
    backoff_delay_ms,
)


class _MockResponse:
    def __init__(self, status: int, text_data: str = "", headers=None):
        self.status = status
        self._text_data = text_data
        self.headers = headers or {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def text(self):
        return self._text_data


class _MockSession:
    closed = False

    def __init__(self, responses):
        self._responses = responses
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        if not self._responses:
            raise AssertionError("No mocked response left")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _json_response(records, status=200):
    return _MockResponse(status, json.dumps(records), headers={"Content-Type": "application/json"})


def _scraper(session, no_sleep, clock=None, secret="s3cret"):
    return ProxyGridScraper(
        base_url="http://grid.test/",
        secret=secret,
        session=session,
        sleep=no_sleep,
        clock=clock,
    )


def test_backoff_formula():
    assert [backoff_delay_ms(a) for a in range(6)] == [1000, 2000, 4000, 8000, 10000, 10000]


@pytest.mark.asyncio
async def test_posts_search_with_secret_header(no_sleep):
    session = _MockSession([_json_response([{"id": "1", "title": "Song", "artist": "A", "video_count": 10}])])
    scraper = _scraper(session, no_sleep)

    items = await scraper.scrape()

    assert [(i.id, i.author, i.play_count) for i in items] == [("1", "A", 10)]
    call = session.calls[0]
    assert call["url"] == "http://grid.test/api/search"
    assert call["json"] == {"type": "tiktok", "query": "trending"}
    assert call["headers"]["x-grid-secret"] == "s3cret"


@pytest.mark.asyncio
async def test_retries_with_backoff_then_succeeds(no_sleep, monkeypatch):
    monkeypatch.setattr(settings.proxy_grid, "max_retries", 3)
    session = _MockSession([
        _MockResponse(502, "bad gateway"),
        aiohttp.ClientConnectionError("reset"),
        _MockResponse(200, '<a href="/music/88">Html Song</a>', headers={"Content-Type": "text/html"}),
    ])
    scraper = ProxyGridScraper(base_url="http://grid.test", secret="x", session=session, sleep=no_sleep)

    items = await scraper.scrape()

    assert [i.id for i in items] == ["88"]
    assert no_sleep.delays == [1.0, 2.0]
    assert len(session.calls) == 3


@pytest.mark.asyncio
async def test_gives_up_after_retries_plus_one_attempts(no_sleep, monkeypatch):
    monkeypatch.setattr(settings.proxy_grid, "max_retries", 2)
    session = _MockSession([_MockResponse(500, "boom") for _ in range(3)])
    scraper = ProxyGridScraper(base_url="http://grid.test", secret="x", session=session, sleep=no_sleep)

    with pytest.raises(ProxyGridRequestError) as exc_info:
        await scraper.scrape()

    assert exc_info.value.status_code == 500
    assert exc_info.value.endpoint == "http://grid.test/api/search"
    assert len(session.calls) == 3
    assert no_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_upstream_timeout_header_is_a_failure(no_sleep, monkeypatch):
    monkeypatch.setattr(settings.proxy_grid, "max_retries", 0)
    session = _MockSession([_MockResponse(200, "[]", headers={"x-timeout": "true"})])
    scraper = _scraper(session, no_sleep)

    with pytest.raises(ProxyGridRequestError):
        await scraper.scrape()


@pytest.mark.asyncio
async def test_missing_secret_raises_not_configured(no_sleep):
    scraper = _scraper(_MockSession([]), no_sleep, secret="")
    assert scraper.configured is False
    with pytest.raises(ProxyGridNotConfiguredError):
        await scraper.scrape()


@pytest.mark.asyncio
async def test_cache_served_until_ttl_and_bypassed_by_force(no_sleep, clock):
    session = _MockSession([
        _json_response([{"id": "1", "title": "first"}]),
        _json_response([{"id": "2", "title": "forced"}]),
        _json_response([{"id": "3", "title": "expired"}]),
    ])
    scraper = _scraper(session, no_sleep, clock=clock)

    first = await scraper.scrape()
    cached = await scraper.scrape()
    assert [i.id for i in cached] == [i.id for i in first] == ["1"]
    assert len(session.calls) == 1

    forced = await scraper.scrape(force=True)
    assert [i.id for i in forced] == ["2"]

    clock.advance(settings.proxy_grid.cache_ttl_seconds + 1)
    expired = await scraper.scrape()
    assert [i.id for i in expired] == ["3"]
    assert len(session.calls) == 3


class _UndecodableResponse(_MockResponse):
    async def text(self):
        raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")


@pytest.mark.asyncio
async def test_undecodable_body_is_retried(no_sleep, monkeypatch):
    monkeypatch.setattr(settings.proxy_grid, "max_retries", 1)
    session = _MockSession([
        _UndecodableResponse(200, headers={"Content-Type": "text/html"}),
        _json_response([{"id": "5", "title": "Recovered"}]),
    ])
    scraper = ProxyGridScraper(base_url="http://grid.test", secret="x", session=session, sleep=no_sleep)

    items = await scraper.scrape()

    assert [i.id for i in items] == ["5"]
    assert no_sleep.delays == [1.0]
