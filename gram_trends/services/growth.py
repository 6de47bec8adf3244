"""
增长率计算 - 当前条目 vs 最近一次历史快照

主信号: play_count 相对变化百分比 (上次 play_count > 0 时)
次信号: 排名变化, 上升为正、下降为负, 有界
无历史: 0.0
"""

from typing import Optional

from gram_trends.models.message import HistorySnapshot, TrendItem

# A full climb from rank N to rank 1 scores at most this many points.
RANK_SIGNAL_SCALE = 50.0


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


class GrowthCalculator:
    """Snapshot-diff momentum score, expressed as a percentage."""

    def __init__(self, rank_scale: float = RANK_SIGNAL_SCALE, precision: int = 2):
        self.rank_scale = rank_scale
        self.precision = precision

    def compute_growth_rate(self, current: TrendItem, previous: Optional[HistorySnapshot]) -> float:
        if previous is None:
            return 0.0

        prev_count = previous.play_count or 0
        if prev_count > 0 and current.play_count > 0:
            change = (current.play_count - prev_count) / prev_count * 100.0
            return round(change, self.precision)

        return round(self._rank_signal(current.rank, previous.rank), self.precision)

    def _rank_signal(self, current_rank: int, previous_rank: Optional[int]) -> float:
        if not previous_rank or previous_rank <= 0 or current_rank <= 0:
            return 0.0
        relative = (previous_rank - current_rank) / previous_rank
        return _clamp(relative, -1.0, 1.0) * self.rank_scale
