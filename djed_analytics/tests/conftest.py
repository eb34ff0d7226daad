"""
DJED ANALYTICS - Test Configuration & Fixtures
Shared fixtures for all test modules.
"""
import pytest
import pytest_asyncio
from typing import List

from djed_analytics.data.models import OracleState, PoolState, Snapshot
from djed_analytics.db.schema import dispose_db, init_db
from djed_analytics.tests.factories import snap


@pytest.fixture
def pool_a() -> PoolState:
    return PoolState(ada_in_reserve=1_000, djed_in_circulation=500, shen_in_circulation=250)


@pytest.fixture
def pool_b() -> PoolState:
    return PoolState(ada_in_reserve=2_000, djed_in_circulation=350, shen_in_circulation=150)


@pytest.fixture
def oracle_a() -> OracleState:
    return OracleState(ada_usd_numerator=3, ada_usd_denominator=1, valid_from_ms=0, valid_to_ms=1)


@pytest.fixture
def oracle_b() -> OracleState:
    return OracleState(ada_usd_numerator=5, ada_usd_denominator=2, valid_from_ms=0, valid_to_ms=1)


@pytest.fixture
def alternating_day(pool_a, pool_b, oracle_a, oracle_b) -> List[Snapshot]:
    """Four alternating entries on 2025-02-01 at 00:30, 01:15, 02:00 and 03:00."""
    return [
        snap("pool", pool_a, "2025-02-01T00:30:00.000Z", "pool-block-1", 1),
        snap("oracle", oracle_a, "2025-02-01T01:15:00.000Z", "oracle-block-1", 2),
        snap("pool", pool_b, "2025-02-01T02:00:00.000Z", "pool-block-2", 3),
        snap("oracle", oracle_b, "2025-02-01T03:00:00.000Z", "oracle-block-2", 4),
    ]


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh SQLite database per test."""
    factory = await init_db(f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}")
    yield factory
    await dispose_db(factory)
