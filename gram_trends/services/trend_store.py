"""
榜单存储仓库 - 异步 SQLAlchemy

当前状态表 audio_trends 走 INSERT ... ON CONFLICT DO UPDATE (SQLite / PostgreSQL),
历史表 audio_trend_history 只追加。一次流水线的全部写入在同一事务里提交。
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, func, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gram_trends.config.settings import settings
from gram_trends.models.db import AudioTrend, AudioTrendHistory, Base, Hashtag, PipelineRun
from gram_trends.models.message import HistorySnapshot, TrendItem

logger = logging.getLogger(__name__)

# Columns overwritten when the acquisition layer caches a raw batch;
# growth and tags are left to the pipeline.
_CACHE_UPDATE_COLUMNS = ("title", "author", "play_count", "rank", "cover_url", "updated_at")

_SNAPSHOT_UPDATE_COLUMNS = (
    "title", "author", "play_count", "rank", "growth_rate",
    "genre", "genre_lower", "vibe", "vibe_lower", "cover_url", "updated_at",
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if value else None


class TrendRepository:
    """异步榜单存储仓库"""

    def __init__(self, db_url: Optional[str] = None, platform: Optional[str] = None):
        self._engine = create_async_engine(
            db_url or settings.database.url,
            echo=settings.database.echo,
        )
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False,
        )
        self.platform = platform or settings.scraper.platform

    async def init_db(self):
        """创建所有表"""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialized")

    async def close(self):
        await self._engine.dispose()

    def _insert(self, model):
        if self._engine.dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    def _upsert_trends(self, rows: List[Dict[str, Any]], update_columns: Iterable[str]):
        stmt = self._insert(AudioTrend).values(rows)
        return stmt.on_conflict_do_update(
            index_elements=[AudioTrend.platform, AudioTrend.id],
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )

    # --- AudioTrend ---

    async def get_stale_trends(self, limit: int = 50) -> List[TrendItem]:
        """Most recently written current-state rows, for the last-resort fallback."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(AudioTrend)
                .where(AudioTrend.platform == self.platform)
                .order_by(AudioTrend.updated_at.desc(), AudioTrend.rank.asc())
                .limit(limit)
            )
            rows = result.scalars().all()
        return [
            TrendItem(
                id=row.id,
                rank=row.rank or 0,
                title=row.title or "Unknown",
                author=row.author or "Unknown",
                play_count=row.play_count or 0,
                cover_url=row.cover_url or "",
            )
            for row in rows
        ]

    async def cache_trends(self, items: List[TrendItem], timestamp: Optional[int] = None) -> int:
        if not items:
            return 0
        ts = timestamp if timestamp is not None else _now_ms()
        rows = [
            {
                "platform": self.platform,
                "id": item.id,
                "title": item.title,
                "author": item.author,
                "play_count": item.play_count,
                "rank": item.rank,
                "growth_rate": None,
                "genre": None,
                "genre_lower": None,
                "vibe": None,
                "vibe_lower": None,
                "cover_url": item.cover_url,
                "updated_at": ts,
            }
            for item in items
        ]
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(self._upsert_trends(rows, _CACHE_UPDATE_COLUMNS))
        return len(rows)

    async def get_latest_history_map(self, ids: List[str]) -> Dict[str, HistorySnapshot]:
        """Latest snapshot per id, one round trip."""
        if not ids:
            return {}
        latest = (
            select(
                AudioTrendHistory.id.label("id"),
                func.max(AudioTrendHistory.snapshot_at).label("snapshot_at"),
            )
            .where(
                AudioTrendHistory.platform == self.platform,
                AudioTrendHistory.id.in_(ids),
            )
            .group_by(AudioTrendHistory.id)
            .subquery()
        )
        stmt = (
            select(AudioTrendHistory)
            .join(
                latest,
                and_(
                    AudioTrendHistory.id == latest.c.id,
                    AudioTrendHistory.snapshot_at == latest.c.snapshot_at,
                ),
            )
            .where(AudioTrendHistory.platform == self.platform)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return {
            row.id: HistorySnapshot(
                id=row.id,
                play_count=row.play_count,
                rank=row.rank,
                snapshot_at=row.snapshot_at,
            )
            for row in rows
        }

    async def get_existing_tag_map(self, ids: List[str]) -> Dict[str, Dict[str, Optional[str]]]:
        if not ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(
                select(AudioTrend.id, AudioTrend.genre, AudioTrend.vibe).where(
                    AudioTrend.platform == self.platform,
                    AudioTrend.id.in_(ids),
                )
            )
            return {
                row.id: {"genre": row.genre, "vibe": row.vibe}
                for row in result.all()
            }

    async def commit_snapshot(self, rows: List[Dict[str, Any]], timestamp: int) -> int:
        """
        Upsert current state and append history for one run, atomically.

        rows: dicts with id/title/author/play_count/rank/cover_url/growth_rate/genre/vibe
        """
        if not rows:
            return 0
        trend_rows = []
        history_rows = []
        for row in rows:
            trend_rows.append({
                "platform": self.platform,
                "id": row["id"],
                "title": row.get("title") or "Unknown",
                "author": row.get("author") or "Unknown",
                "play_count": row.get("play_count", 0),
                "rank": row["rank"],
                "growth_rate": row.get("growth_rate"),
                "genre": row.get("genre"),
                "genre_lower": _lower(row.get("genre")),
                "vibe": row.get("vibe"),
                "vibe_lower": _lower(row.get("vibe")),
                "cover_url": row.get("cover_url", ""),
                "updated_at": timestamp,
            })
            history_rows.append({
                "platform": self.platform,
                "id": row["id"],
                "snapshot_at": timestamp,
                "play_count": row.get("play_count", 0),
                "rank": row["rank"],
            })

        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(self._upsert_trends(trend_rows, _SNAPSHOT_UPDATE_COLUMNS))
                await session.execute(insert(AudioTrendHistory).values(history_rows))
        logger.info("Committed snapshot at %d: %d trends", timestamp, len(trend_rows))
        return len(trend_rows)

    async def list_trends(
        self,
        limit: int = 50,
        genre: Optional[str] = None,
        vibe: Optional[str] = None,
    ) -> List[Dict]:
        stmt = select(AudioTrend).where(AudioTrend.platform == self.platform)
        if genre:
            stmt = stmt.where(AudioTrend.genre_lower == genre.lower())
        if vibe:
            stmt = stmt.where(AudioTrend.vibe_lower == vibe.lower())
        stmt = stmt.order_by(AudioTrend.rank.asc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [self._row_to_dict(r) for r in result.scalars().all()]

    async def list_history(self, trend_id: str, limit: int = 100) -> List[Dict]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AudioTrendHistory)
                .where(
                    AudioTrendHistory.platform == self.platform,
                    AudioTrendHistory.id == trend_id,
                )
                .order_by(AudioTrendHistory.snapshot_at.asc())
                .limit(limit)
            )
            return [self._row_to_dict(r) for r in result.scalars().all()]

    # --- Hashtag ---

    async def upsert_hashtags(self, hashtags: List[Dict[str, Any]], timestamp: int) -> int:
        rows = [
            {
                "platform": self.platform,
                "slug": tag["slug"],
                "volume": tag.get("volume"),
                "competition_score": tag.get("competition_score"),
                "related_tags": list(tag.get("related_tags") or []),
                "updated_at": timestamp,
            }
            for tag in hashtags
            if tag.get("slug")
        ]
        if not rows:
            return 0
        stmt = self._insert(Hashtag).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Hashtag.platform, Hashtag.slug],
            set_={
                "volume": stmt.excluded.volume,
                "competition_score": stmt.excluded.competition_score,
                "related_tags": stmt.excluded.related_tags,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(stmt)
        return len(rows)

    async def list_hashtags(self, limit: int = 50) -> List[Dict]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Hashtag)
                .where(Hashtag.platform == self.platform)
                .order_by(Hashtag.volume.desc())
                .limit(limit)
            )
            return [self._row_to_dict(r) for r in result.scalars().all()]

    # --- PipelineRun ---

    async def record_pipeline_run(self, data: Dict[str, Any]) -> str:
        async with self._session_factory() as session:
            run = PipelineRun(**data)
            session.add(run)
            await session.commit()
            return run.id

    async def list_pipeline_runs(self, limit: int = 20, since_ms: Optional[int] = None) -> List[Dict]:
        stmt = select(PipelineRun)
        if since_ms is not None:
            stmt = stmt.where(PipelineRun.started_at >= since_ms)
        stmt = stmt.order_by(PipelineRun.started_at.desc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [self._row_to_dict(r) for r in result.scalars().all()]

    @staticmethod
    def _row_to_dict(row) -> Dict:
        return {c.name: getattr(row, c.name) for c in row.__table__.columns}
