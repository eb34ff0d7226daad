"""
DJED ANALYTICS - Daily Bucketing
Partitions the ordered snapshot stream into UTC calendar days.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Sequence

from djed_analytics.data.models import Snapshot
from djed_analytics.utils.helpers import day_bounds, day_key, iso_ms


@dataclass(frozen=True)
class DailyBucket:
    """All snapshots observed on one UTC day. Bounds are the full calendar day."""
    day: str
    start: datetime
    end: datetime
    entries: List[Snapshot] = field(default_factory=list)

    @property
    def start_iso(self) -> str:
        return iso_ms(self.start)

    @property
    def end_iso(self) -> str:
        return iso_ms(self.end)


def break_into_days(snapshots: Sequence[Snapshot]) -> List[DailyBucket]:
    """Group snapshots by UTC date, keeping relative order; buckets ascend by date."""
    grouped: Dict[str, List[Snapshot]] = {}
    for snapshot in snapshots:
        grouped.setdefault(day_key(snapshot.timestamp), []).append(snapshot)

    buckets = []
    for key in sorted(grouped):
        start, end = day_bounds(key)
        entries = sorted(grouped[key], key=lambda s: s.timestamp)
        buckets.append(DailyBucket(day=key, start=start, end=end, entries=entries))
    return buckets
