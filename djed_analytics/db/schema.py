"""
DJED ANALYTICS - Database Schema Design
SQLAlchemy models for the daily analytics tables and sync bookkeeping.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    BigInteger, Column, DateTime, Float, Integer, String, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ReserveRatio(Base):
    """Time-weighted daily reserve ratio."""
    __tablename__ = "reserve_ratios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    day = Column(String(10), nullable=False)  # YYYY-MM-DD (UTC)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    reserve_ratio = Column(Float, nullable=False)
    block = Column(String(64), nullable=False)
    slot = Column(BigInteger, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (
        UniqueConstraint("day", name="uq_reserve_ratios_day"),
    )


class MarketCap(Base):
    """Time-weighted daily market capitalisation per token (DJED, SHEN)."""
    __tablename__ = "market_caps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    day = Column(String(10), nullable=False)
    token = Column(String(8), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    usd_value = Column(Float, nullable=False)
    ada_value = Column(Float, nullable=False)
    block = Column(String(64), nullable=False)
    slot = Column(BigInteger, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (
        UniqueConstraint("day", "token", name="uq_market_caps_day_token"),
        Index("idx_market_caps_token_day", "token", "day"),
    )


class TokenPrice(Base):
    """Time-weighted daily unit price per token (ADA, DJED, SHEN)."""
    __tablename__ = "token_prices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    day = Column(String(10), nullable=False)
    token = Column(String(8), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    usd_value = Column(Float, nullable=False)
    ada_value = Column(Float, nullable=False)
    block = Column(String(64), nullable=False)
    slot = Column(BigInteger, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (
        UniqueConstraint("day", "token", name="uq_token_prices_day_token"),
        Index("idx_token_prices_token_day", "token", "day"),
    )


class SyncAnchor(Base):
    """Latest block known to be canonical, one row per logical stream."""
    __tablename__ = "sync_anchors"

    stream = Column(String(32), primary_key=True)
    latest_block_hash = Column(String(64), nullable=False)
    latest_slot = Column(BigInteger, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class SyncLease(Base):
    """Cross-process sync lock: whoever holds an unexpired lease runs the cycle."""
    __tablename__ = "sync_leases"

    name = Column(String(32), primary_key=True)
    holder = Column(String(64), nullable=False)
    expires_at_ms = Column(BigInteger, nullable=False)
    acquired_at = Column(DateTime(timezone=True), default=_now)


ANALYTICS_TABLES = (ReserveRatio, MarketCap, TokenPrice)


async def init_db(db_url: str, echo: bool = False) -> async_sessionmaker:
    """Initialize database and create all tables."""
    engine = create_async_engine(db_url, echo=echo)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return session_factory


async def dispose_db(session_factory: async_sessionmaker) -> None:
    engine = session_factory.kw.get("bind")
    if engine is not None:
        await engine.dispose()
