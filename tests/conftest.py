"""
Test fixtures
"""

from typing import List

import pytest

from gram_trends.models.message import TrendItem
from gram_trends.services.trend_store import TrendRepository


class FakeClock:
    """Manually advanced clock, seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def sample_items() -> List[TrendItem]:
    return [
        TrendItem(id="7301", rank=1, title="Espresso", author="Sabrina Carpenter", play_count=1_200_000),
        TrendItem(id="7302", rank=2, title="Sad Girl Summer", author="Mindy", play_count=350_000),
        TrendItem(id="7303", rank=3, title="Gym Phonk", author="DJ Lift", play_count=90_000),
    ]


@pytest.fixture
async def trend_repo():
    """In-memory SQLite trend repository for testing."""
    repo = TrendRepository(db_url="sqlite+aiosqlite:///:memory:", platform="tiktok")
    await repo.init_db()
    yield repo
    await repo.close()
