"""
数据模型 - 采集 / 计算 / 入库之间传递的数据结构
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


# Acquisition sources, in fallback order.
SOURCE_BROWSER = "browser"
SOURCE_PROXY_GRID = "proxy_grid"
SOURCE_STALE = "stale"
SOURCE_NONE = "none"

STATUS_SUCCESS = "success"
STATUS_WARNING = "warning"
STATUS_ERROR = "error"


@dataclass
class TrendItem:
    """单次采集中的一条榜单音频"""
    id: str = ""
    rank: int = 0                   # 1-based, 归一化后重新稠密编号
    title: str = "Unknown"
    author: str = "Unknown"
    play_count: int = 0             # 使用量 (视频数)
    cover_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def with_rank(self, rank: int) -> "TrendItem":
        return TrendItem(
            id=self.id,
            rank=rank,
            title=self.title,
            author=self.author,
            play_count=self.play_count,
            cover_url=self.cover_url,
        )


@dataclass
class HistorySnapshot:
    """audio_trend_history 中某条音频的一次快照"""
    id: str = ""
    play_count: Optional[int] = None
    rank: Optional[int] = None
    snapshot_at: int = 0            # epoch millis


@dataclass
class TagResult:
    """风格标注结果"""
    genre: str = "unknown"
    vibe: str = "mixed"


@dataclass
class AcquisitionResult:
    """采集结果 + 实际命中的数据源"""
    items: List[TrendItem] = field(default_factory=list)
    source: str = SOURCE_NONE


@dataclass
class PipelineResult:
    """一次流水线执行结果"""
    status: str = STATUS_SUCCESS
    count: int = 0
    top_song: Optional[str] = None
    tags_generated: int = 0
    source: str = SOURCE_NONE
    message: str = ""
    hashtag_ingest: Dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
