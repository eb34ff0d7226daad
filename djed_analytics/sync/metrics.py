"""
DJED ANALYTICS - Metric Pipelines
Each metric is one or more series (one per token) computed from the shared
snapshot stream: bucket -> weigh -> aggregate -> persistable records.
"""
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type

from djed_analytics.data.models import OracleState, PoolState, Snapshot, Token
from djed_analytics.db.schema import MarketCap, ReserveRatio, TokenPrice
from djed_analytics.pricing import formulas
from djed_analytics.sync.aggregator import DailyAggregate, aggregate, drop_incomplete_days, rows_after
from djed_analytics.sync.bucketing import break_into_days
from djed_analytics.sync.weighting import Calculator, MetricValue, assign_time_weights
from djed_analytics.utils.logger import get_logger

logger = get_logger("metrics")


def _guarded(fn: Callable[[PoolState, OracleState], MetricValue]) -> Calculator:
    """A formula that is undefined for a pair (zero circulation, zero rate) yields no value."""
    def calculate(pool: PoolState, oracle: OracleState) -> Optional[MetricValue]:
        try:
            return fn(pool, oracle)
        except ZeroDivisionError:
            return None
    return calculate


@dataclass(frozen=True)
class Series:
    token: Optional[Token]
    calculator: Calculator


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    model: Type[Any]
    series: Tuple[Series, ...]

    def to_record(self, row: DailyAggregate, token: Optional[Token]) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "day": row.day,
            "timestamp": row.timestamp,
            "block": row.block_hash,
            "slot": row.slot,
        }
        if token is not None:
            record["token"] = token.value
        # floats only from here on
        record.update({name: float(value) for name, value in row.values.items()})
        return record


RESERVE_RATIO = MetricDefinition(
    name="reserve_ratio",
    model=ReserveRatio,
    series=(
        Series(None, _guarded(lambda p, o: {"reserve_ratio": formulas.reserve_ratio(p, o)})),
    ),
)

MARKET_CAP = MetricDefinition(
    name="market_cap",
    model=MarketCap,
    series=tuple(
        Series(token, _guarded(lambda p, o, t=token: formulas.market_cap(t, p, o)))
        for token in (Token.DJED, Token.SHEN)
    ),
)

TOKEN_PRICE = MetricDefinition(
    name="token_price",
    model=TokenPrice,
    series=tuple(
        Series(token, _guarded(lambda p, o, t=token: formulas.token_price(t, p, o)))
        for token in (Token.ADA, Token.DJED, Token.SHEN)
    ),
)

ALL_METRICS: Tuple[MetricDefinition, ...] = (RESERVE_RATIO, MARKET_CAP, TOKEN_PRICE)


def compute_series(snapshots: Sequence[Snapshot], calculator: Calculator) -> List[DailyAggregate]:
    """Bucketing, weighting and aggregation, strictly in that order."""
    buckets = break_into_days(snapshots)
    weighted, _ = assign_time_weights(buckets, calculator)
    return aggregate(weighted)


def build_records(
    metric: MetricDefinition,
    snapshots: Sequence[Snapshot],
    today: date,
    after_day: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Persistable records for every complete day of every series of `metric`.

    `after_day` limits the output to days strictly after it (update path).
    """
    records: List[Dict[str, Any]] = []
    for series in metric.series:
        rows = compute_series(list(snapshots), series.calculator)
        rows = rows_after(drop_incomplete_days(rows, today), after_day)
        records.extend(metric.to_record(row, series.token) for row in rows)
    logger.debug("metric_records_built", metric=metric.name, records=len(records),
                 after_day=after_day)
    return records
