"""
DJED ANALYTICS - Analytics Repository
Data access for the daily analytics tables and the sync anchors. Writes
are append-only ("insert, skip duplicates") or range deletes by slot.
"""
from typing import Any, Dict, List, Optional, Sequence, Type

from sqlalchemy import delete, func, select, union
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import async_sessionmaker

from djed_analytics.data.models import BlockRef
from djed_analytics.db.schema import ANALYTICS_TABLES, SyncAnchor
from djed_analytics.exceptions import ConfigurationError
from djed_analytics.utils.logger import get_logger

logger = get_logger("repository")

INSERT_CHUNK = 200


class AnalyticsRepository:
    """Thin async data-access layer over a session factory."""

    def __init__(self, session_factory: async_sessionmaker,
                 tables: Sequence[Type[Any]] = ANALYTICS_TABLES):
        self.session_factory = session_factory
        self.tables = tuple(tables)

    def _insert(self, model: Type[Any], records: List[Dict[str, Any]]):
        dialect = self.session_factory.kw["bind"].dialect.name
        if dialect == "postgresql":
            return pg_insert(model).values(records).on_conflict_do_nothing()
        if dialect == "sqlite":
            return sqlite_insert(model).values(records).on_conflict_do_nothing()
        raise ConfigurationError(f"insert-ignore is not supported on the {dialect} dialect; use SQLite or PostgreSQL")

    async def count(self, model: Type[Any]) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model))
            return int(result.scalar_one())

    async def latest(self, model: Type[Any]) -> Optional[Any]:
        """Most recent row by day, then slot."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(model).order_by(model.day.desc(), model.slot.desc()).limit(1)
            )
            return result.scalars().first()

    async def insert_ignore(self, model: Type[Any], records: List[Dict[str, Any]]) -> int:
        """Insert records, silently skipping any that collide on a unique key. Returns rows written."""
        if not records:
            return 0
        inserted = 0
        async with self.session_factory() as session:
            async with session.begin():
                for start in range(0, len(records), INSERT_CHUNK):
                    result = await session.execute(self._insert(model, records[start:start + INSERT_CHUNK]))
                    inserted += max(result.rowcount or 0, 0)
        logger.info("rows_inserted", table=model.__tablename__, offered=len(records), inserted=inserted)
        return inserted

    async def latest_block(self) -> Optional[BlockRef]:
        """Highest-slot block referenced by any analytics row."""
        refs = await self.distinct_blocks(limit=1)
        return refs[0] if refs else None

    async def distinct_blocks(self, max_slot: Optional[int] = None,
                              limit: Optional[int] = None) -> List[BlockRef]:
        """Distinct (block, slot) pairs across analytics tables, newest slot first."""
        selects = []
        for model in self.tables:
            stmt = select(model.block.label("block"), model.slot.label("slot"))
            if max_slot is not None:
                stmt = stmt.where(model.slot <= max_slot)
            selects.append(stmt)
        combined = union(*selects).subquery()
        query = select(combined.c.block, combined.c.slot).order_by(combined.c.slot.desc())
        if limit is not None:
            query = query.limit(limit)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [BlockRef(block_hash=block, slot=int(slot)) for block, slot in result.all()]

    async def delete_after_slot(self, slot: int) -> Dict[str, int]:
        """Delete every analytics row with slot > `slot`, all tables in one transaction."""
        deleted: Dict[str, int] = {}
        async with self.session_factory() as session:
            async with session.begin():
                for model in self.tables:
                    result = await session.execute(delete(model).where(model.slot > slot))
                    deleted[model.__tablename__] = max(result.rowcount or 0, 0)
        logger.warning("rows_rolled_back", after_slot=slot, deleted=deleted)
        return deleted

    async def get_anchor(self, stream: str) -> Optional[BlockRef]:
        async with self.session_factory() as session:
            anchor = await session.get(SyncAnchor, stream)
            if anchor is None:
                return None
            return BlockRef(block_hash=anchor.latest_block_hash, slot=int(anchor.latest_slot))

    async def set_anchor(self, stream: str, ref: BlockRef) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                anchor = await session.get(SyncAnchor, stream)
                if anchor is None:
                    session.add(SyncAnchor(stream=stream, latest_block_hash=ref.block_hash,
                                           latest_slot=ref.slot))
                else:
                    anchor.latest_block_hash = ref.block_hash
                    anchor.latest_slot = ref.slot
        logger.debug("anchor_updated", stream=stream, block_hash=ref.block_hash, slot=ref.slot)
