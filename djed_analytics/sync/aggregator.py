"""
DJED ANALYTICS - Metric Aggregator
Reduces each weighted day to one duration-weighted mean.

The weighted sum is divided by the full day length, not by the covered
duration: a day observed for six hours contributes a quarter of its mean.
"""
from dataclasses import dataclass
from datetime import date, datetime
from fractions import Fraction
from typing import Dict, List, Optional, Sequence

from djed_analytics.sync.weighting import WeightedBucket
from djed_analytics.utils.helpers import MS_PER_DAY
from djed_analytics.utils.logger import get_logger

logger = get_logger("aggregator")


@dataclass(frozen=True)
class DailyAggregate:
    """One persisted day of a metric, with the provenance of the day's last snapshot."""
    day: str
    timestamp: datetime
    values: Dict[str, Fraction]
    block_hash: str
    slot: int
    covered_ms: int = 0


def aggregate_bucket(weighted: WeightedBucket) -> Optional[DailyAggregate]:
    sums: Dict[str, Fraction] = {}
    covered = 0
    for entry in weighted.entries:
        if entry.metric_value is None or entry.weight <= 0:
            continue
        covered += entry.weight
        for name, value in entry.metric_value.items():
            sums[name] = sums.get(name, Fraction(0)) + value * entry.weight

    if covered == 0:
        return None

    last = weighted.entries[-1].snapshot
    return DailyAggregate(
        day=weighted.day,
        timestamp=last.timestamp,
        values={name: total / MS_PER_DAY for name, total in sums.items()},
        block_hash=last.block_hash,
        slot=last.slot,
        covered_ms=covered,
    )


def aggregate(weighted_buckets: Sequence[WeightedBucket]) -> List[DailyAggregate]:
    """One row per day with coverage; days that never saw a complete pair are skipped."""
    rows: List[DailyAggregate] = []
    for weighted in weighted_buckets:
        row = aggregate_bucket(weighted)
        if row is None:
            logger.debug("day_without_coverage", day=weighted.day, entries=len(weighted.entries))
            continue
        rows.append(row)
    return rows


def drop_incomplete_days(rows: Sequence[DailyAggregate], today: date) -> List[DailyAggregate]:
    """Remove rows for the current UTC day (and anything later); that day is still filling up."""
    cutoff = today.isoformat()
    kept = [row for row in rows if row.day < cutoff]
    if len(kept) != len(rows):
        logger.debug("incomplete_days_dropped", dropped=len(rows) - len(kept), today=cutoff)
    return kept


def rows_after(rows: Sequence[DailyAggregate], day: Optional[str]) -> List[DailyAggregate]:
    """Rows strictly after `day` (all rows when `day` is None)."""
    if day is None:
        return list(rows)
    return [row for row in rows if row.day > day]
