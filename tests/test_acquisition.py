"""
Acquisition fallback ordering tests: browser -> Proxy Grid -> stale -> empty.
"""

from typing import List

import pytest

from gram_trends.agents.acquisition_agent import TrendAcquisitionAgent
from gram_trends.models.message import TrendItem
from gram_trends.services.circuit_breaker import CircuitBreaker
from gram_trends.services.stale_store import StaleDataStore


class _FakeScraper:
    def __init__(self, outcomes, configured: bool = True):
        self._outcomes = list(outcomes)
        self.configured = configured
        self.calls = 0
        self.force_flags: List[bool] = []

    async def scrape(self, force: bool = False):
        self.calls += 1
        self.force_flags.append(force)
        outcome = self._outcomes.pop(0) if self._outcomes else []
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        pass


class _FakeNotifier:
    def __init__(self):
        self.messages: List[str] = []

    def notify(self, message: str):
        self.messages.append(message)

    async def close(self):
        pass


def _items(prefix: str, n: int) -> List[TrendItem]:
    return [TrendItem(id=f"{prefix}{i}", rank=i + 1, title=f"{prefix} {i}") for i in range(n)]


def _agent(primary, secondary, stale=None, no_sleep=None, clock=None, notifier=None):
    return TrendAcquisitionAgent(
        primary=primary,
        secondary=secondary,
        stale_store=stale or StaleDataStore(),
        notifier=notifier or _FakeNotifier(),
        primary_breaker=CircuitBreaker("browser", threshold=5, timeout_seconds=300, clock=clock),
        secondary_breaker=CircuitBreaker("proxy_grid", threshold=5, timeout_seconds=300, clock=clock),
        sleep=no_sleep,
    )


@pytest.mark.asyncio
async def test_primary_success_first_try(no_sleep, clock):
    primary = _FakeScraper([_items("b", 3)])
    secondary = _FakeScraper([])
    stale = StaleDataStore()
    agent = _agent(primary, secondary, stale, no_sleep, clock)

    result = await agent.acquire()

    assert result.source == "browser"
    assert len(result.items) == 3
    assert secondary.calls == 0
    assert no_sleep.delays == []
    # Successful batch is kept as the last-good copy.
    assert [i.id for i in await stale.get_stale()] == ["b0", "b1", "b2"]


@pytest.mark.asyncio
async def test_primary_retries_with_backoff(no_sleep, clock):
    primary = _FakeScraper([RuntimeError("nav timeout"), [], _items("b", 2)])
    agent = _agent(primary, _FakeScraper([]), no_sleep=no_sleep, clock=clock)

    result = await agent.acquire()

    assert result.source == "browser"
    assert primary.calls == 3
    assert no_sleep.delays == [1.0, 2.0]
    assert agent.primary_breaker.failure_count == 0


@pytest.mark.asyncio
async def test_falls_back_to_stale_after_primary_and_secondary_fail(no_sleep, clock):
    primary = _FakeScraper([RuntimeError("a"), RuntimeError("b"), RuntimeError("c")])
    secondary = _FakeScraper([RuntimeError("grid down")])
    stale = StaleDataStore()
    stale.remember([TrendItem(id=f"s{i}", rank=100 + i) for i in range(10)])
    notifier = _FakeNotifier()
    agent = _agent(primary, secondary, stale, no_sleep, clock, notifier)

    items = await agent.scrape()

    assert [i.id for i in items] == [f"s{i}" for i in range(10)]
    assert [i.rank for i in items] == list(range(1, 11))
    assert primary.calls == 3
    assert secondary.calls == 1
    assert no_sleep.delays == [1.0, 2.0]
    assert agent.primary_breaker.failure_count == 3
    assert agent.secondary_breaker.failure_count == 1
    assert any("stale data" in m for m in notifier.messages)


@pytest.mark.asyncio
async def test_secondary_success_alerts_and_reports_source(no_sleep, clock):
    notifier = _FakeNotifier()
    agent = _agent(_FakeScraper([[], [], []]), _FakeScraper([_items("g", 4)]), no_sleep=no_sleep,
                   clock=clock, notifier=notifier)

    result = await agent.acquire()

    assert result.source == "proxy_grid"
    assert len(result.items) == 4
    assert notifier.messages and "Proxy Grid" in notifier.messages[0]


@pytest.mark.asyncio
async def test_force_secondary_skips_primary(no_sleep, clock):
    primary = _FakeScraper([_items("b", 1)])
    secondary = _FakeScraper([_items("g", 2)])
    agent = _agent(primary, secondary, no_sleep=no_sleep, clock=clock)

    result = await agent.acquire(force_secondary=True)

    assert result.source == "proxy_grid"
    assert primary.calls == 0
    assert secondary.force_flags == [True]


@pytest.mark.asyncio
async def test_use_stale_fallback_short_circuits_live_sources(no_sleep, clock):
    primary = _FakeScraper([_items("b", 1)])
    stale = StaleDataStore()
    stale.remember(_items("s", 2))
    agent = _agent(primary, _FakeScraper([]), stale, no_sleep, clock)

    result = await agent.acquire(use_stale_fallback=True)

    assert result.source == "stale"
    assert primary.calls == 0


@pytest.mark.asyncio
async def test_unconfigured_secondary_returns_empty_and_alerts(no_sleep, clock):
    notifier = _FakeNotifier()
    secondary = _FakeScraper([], configured=False)
    agent = _agent(_FakeScraper([[], [], []]), secondary, no_sleep=no_sleep, clock=clock, notifier=notifier)

    result = await agent.acquire()

    assert result.items == []
    assert result.source == "none"
    assert secondary.calls == 0
    assert "not configured" in notifier.messages[0]


@pytest.mark.asyncio
async def test_open_primary_breaker_skips_browser(no_sleep, clock):
    primary = _FakeScraper([_items("b", 1)])
    agent = _agent(primary, _FakeScraper([_items("g", 1)]), no_sleep=no_sleep, clock=clock)
    for _ in range(5):
        agent.primary_breaker.record_failure()

    result = await agent.acquire()

    assert primary.calls == 0
    assert result.source == "proxy_grid"


@pytest.mark.asyncio
async def test_open_secondary_breaker_serves_stale_or_empty(no_sleep, clock):
    notifier = _FakeNotifier()
    secondary = _FakeScraper([_items("g", 1)])
    agent = _agent(_FakeScraper([[], [], []]), secondary, no_sleep=no_sleep, clock=clock, notifier=notifier)
    for _ in range(5):
        agent.secondary_breaker.record_failure()

    result = await agent.acquire()

    assert secondary.calls == 0
    assert result.items == []
    assert "All circuits open" in notifier.messages[-1]


@pytest.mark.asyncio
async def test_everything_exhausted_returns_empty(no_sleep, clock):
    notifier = _FakeNotifier()
    agent = _agent(_FakeScraper([[], [], []]), _FakeScraper([[]]), no_sleep=no_sleep,
                   clock=clock, notifier=notifier)

    result = await agent.acquire()

    assert result.items == []
    assert "All methods exhausted" in notifier.messages[-1]
    state = agent.get_circuit_state()
    assert state["browser"]["failure_count"] == 3
    assert state["proxy_grid"]["failure_count"] == 1
