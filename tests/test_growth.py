"""
Tests for snapshot-diff growth rate.
"""

from gram_trends.models.message import HistorySnapshot, TrendItem
from gram_trends.services.growth import GrowthCalculator


compute_growth_rate = GrowthCalculator().compute_growth_rate


def _item(play_count=0, rank=1):
    return TrendItem(id="x", rank=rank, play_count=play_count)


def _prev(play_count=None, rank=None):
    return HistorySnapshot(id="x", play_count=play_count, rank=rank, snapshot_at=1)


def test_no_history_is_zero():
    assert compute_growth_rate(_item(1500), None) == 0.0


def test_play_count_growth_percentage():
    assert compute_growth_rate(_item(1500), _prev(1000)) == 50.0
    assert compute_growth_rate(_item(500), _prev(1000)) == -50.0
    assert compute_growth_rate(_item(1001), _prev(3)) == 33266.67


def test_rank_signal_when_previous_count_unusable():
    climbing = compute_growth_rate(_item(0, rank=2), _prev(0, rank=10))
    falling = compute_growth_rate(_item(0, rank=10), _prev(None, rank=2))
    steady = compute_growth_rate(_item(0, rank=5), _prev(0, rank=5))

    assert climbing > 0
    assert falling < 0
    assert steady == 0.0


def test_rank_signal_is_monotonic_and_bounded():
    calc = GrowthCalculator()
    scores = [calc.compute_growth_rate(_item(0, rank=r), _prev(0, rank=20)) for r in range(1, 51)]
    assert scores == sorted(scores, reverse=True)
    assert max(scores) <= calc.rank_scale
    assert min(scores) >= -calc.rank_scale


def test_missing_previous_rank_has_no_signal():
    assert compute_growth_rate(_item(0, rank=3), _prev(0, rank=None)) == 0.0
