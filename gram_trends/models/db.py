"""
SQLAlchemy ORM 数据模型
"""

import time
import uuid

from sqlalchemy import (
    BigInteger, Column, Float, Index, Integer, String, Text,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import JSON


def _now_ms() -> int:
    return int(time.time() * 1000)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class AudioTrend(Base):
    """当前榜单状态, 每个 (platform, id) 一行"""
    __tablename__ = "audio_trends"

    platform = Column(String(32), primary_key=True, default="tiktok")
    id = Column(String(128), primary_key=True)
    title = Column(Text, nullable=False)
    author = Column(String(256))
    play_count = Column(BigInteger)
    rank = Column(Integer)
    growth_rate = Column(Float)
    genre = Column(String(64))
    genre_lower = Column(String(64))
    vibe = Column(String(64))
    vibe_lower = Column(String(64))
    cover_url = Column(Text)
    updated_at = Column(BigInteger)

    __table_args__ = (
        Index("idx_audio_platform_genre_rank", "platform", "genre_lower", "rank"),
        Index("idx_audio_platform_vibe_rank", "platform", "vibe_lower", "rank"),
        Index("idx_audio_platform_rank", "platform", "rank"),
        Index("idx_audio_platform_updated", "platform", "updated_at"),
    )


class AudioTrendHistory(Base):
    """历史快照, 只追加"""
    __tablename__ = "audio_trend_history"

    platform = Column(String(32), primary_key=True, default="tiktok")
    id = Column(String(128), primary_key=True)
    snapshot_at = Column(BigInteger, primary_key=True)
    play_count = Column(BigInteger)
    rank = Column(Integer)

    __table_args__ = (
        Index("idx_audio_history_snapshot", "snapshot_at"),
    )


class Hashtag(Base):
    __tablename__ = "hashtags"

    platform = Column(String(32), primary_key=True, default="tiktok")
    slug = Column(String(256), primary_key=True)
    volume = Column(BigInteger)
    competition_score = Column(Integer)
    related_tags = Column(JSON, default=list)
    updated_at = Column(BigInteger)

    __table_args__ = (
        Index("idx_hashtag_platform_volume", "platform", "volume"),
        Index("idx_hashtag_platform_updated", "platform", "updated_at"),
    )


class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    id = Column(String(64), primary_key=True, default=_uuid)
    trigger_type = Column(String(16), default="cron")
    status = Column(String(16), nullable=False, index=True)
    source = Column(String(16), default="none")
    item_count = Column(Integer, default=0)
    tags_generated = Column(Integer, default=0)
    duration_ms = Column(Integer, default=0)
    message = Column(Text, default="")
    hashtag_ingest = Column(JSON, default=dict)
    started_at = Column(BigInteger, nullable=False, default=_now_ms, index=True)
