"""
DJED ANALYTICS - Time-Weighting State Machine

Walks day buckets in order and gives every snapshot a duration weight plus
the pool/oracle pair that was in force when it was observed.

For entry i in a bucket (previous = max(carry, day start) for the first entry):
    weight(i) = ts(i) - previous              (last entry: day end - ts(i))
    period(i) = [previous, ts(i))             (last entry: [ts(i), day end])
    metric(i) = f(active pool, active oracle) as of BEFORE i

Active state is updated with i's own datum only after i has been weighted.
The one exception is bootstrap: while a kind has never been observed, the
entry introducing it fills that slot for itself, so the very first complete
pair appears at the entry that completes it. Once both kinds have been seen
an entry's own datum never influences its own metric.

State is threaded explicitly through `WeightingState` so a caller can
continue from where a previous run stopped.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from fractions import Fraction
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from djed_analytics.data.models import OracleState, PoolState, Snapshot, SnapshotKind
from djed_analytics.exceptions import InvariantViolation
from djed_analytics.sync.bucketing import DailyBucket
from djed_analytics.utils.helpers import day_key, from_ms, to_ms

MetricValue = Dict[str, Fraction]
Calculator = Callable[[PoolState, OracleState], Optional[MetricValue]]


@dataclass(frozen=True)
class WeightingState:
    """Everything the state machine carries from one bucket to the next."""
    active_pool: Optional[PoolState] = None
    active_oracle: Optional[OracleState] = None
    carry_timestamp_ms: Optional[int] = None


@dataclass(frozen=True)
class Period:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class WeightedEntry:
    snapshot: Snapshot
    weight: int
    active_pool: Optional[PoolState] = None
    active_oracle: Optional[OracleState] = None
    metric_value: Optional[MetricValue] = None
    period: Optional[Period] = None


@dataclass(frozen=True)
class WeightedBucket:
    bucket: DailyBucket
    entries: List[WeightedEntry] = field(default_factory=list)

    @property
    def day(self) -> str:
        return self.bucket.day


def _advance(state: WeightingState, snapshot: Snapshot) -> WeightingState:
    if snapshot.kind == SnapshotKind.POOL:
        return replace(state, active_pool=snapshot.datum)
    return replace(state, active_oracle=snapshot.datum)


def _pair_before(state: WeightingState, snapshot: Snapshot) -> Tuple[Optional[PoolState], Optional[OracleState]]:
    pool, oracle = state.active_pool, state.active_oracle
    if pool is None and snapshot.kind == SnapshotKind.POOL:
        pool = snapshot.datum
    if oracle is None and snapshot.kind == SnapshotKind.ORACLE:
        oracle = snapshot.datum
    return pool, oracle


def weigh_bucket(
    bucket: DailyBucket,
    calculator: Calculator,
    state: WeightingState,
) -> Tuple[WeightedBucket, WeightingState]:
    """Weigh one day. Returns the weighted day and the state to hand to the next one."""
    if not bucket.entries:
        return WeightedBucket(bucket=bucket, entries=[]), state

    day_start_ms = to_ms(bucket.start)
    day_end_ms = to_ms(bucket.end)
    previous_ms = day_start_ms
    if state.carry_timestamp_ms is not None:
        previous_ms = max(state.carry_timestamp_ms, day_start_ms)

    weighted: List[WeightedEntry] = []
    last_index = len(bucket.entries) - 1
    for index, snapshot in enumerate(bucket.entries):
        if day_key(snapshot.timestamp) != bucket.day:
            raise InvariantViolation(
                f"snapshot at {snapshot.timestamp.isoformat()} filed under day {bucket.day}"
            )
        ts_ms = to_ms(snapshot.timestamp)
        if ts_ms < previous_ms:
            raise InvariantViolation(
                f"entries of {bucket.day} are not sorted ({snapshot.block_hash} goes back in time)"
            )

        is_last = index == last_index
        if is_last:
            weight = max(0, day_end_ms - ts_ms)
            interval = (ts_ms, day_end_ms)
        else:
            weight = max(0, ts_ms - previous_ms)
            interval = (previous_ms, ts_ms)

        pool, oracle = _pair_before(state, snapshot)
        if pool is not None and oracle is not None:
            entry = WeightedEntry(
                snapshot=snapshot,
                weight=weight,
                active_pool=pool,
                active_oracle=oracle,
                metric_value=calculator(pool, oracle),
                period=Period(start=from_ms(interval[0]), end=from_ms(interval[1])),
            )
        else:
            entry = WeightedEntry(snapshot=snapshot, weight=weight)
        weighted.append(entry)

        previous_ms = ts_ms
        state = _advance(state, snapshot)

    state = replace(state, carry_timestamp_ms=to_ms(bucket.entries[-1].timestamp))
    return WeightedBucket(bucket=bucket, entries=weighted), state


def assign_time_weights(
    buckets: Sequence[DailyBucket],
    calculator: Calculator,
    state: Optional[WeightingState] = None,
) -> Tuple[List[WeightedBucket], WeightingState]:
    """
    Fold `weigh_bucket` over the buckets in order.

    Buckets must ascend by day; the returned state is what a later call
    should start from to continue the same timeline.
    """
    state = state or WeightingState()
    result: List[WeightedBucket] = []
    previous_day: Optional[str] = None
    for bucket in buckets:
        if previous_day is not None and bucket.day <= previous_day:
            raise InvariantViolation(f"bucket {bucket.day} does not follow {previous_day}")
        weighted, state = weigh_bucket(bucket, calculator, state)
        result.append(weighted)
        previous_day = bucket.day
    return result, state
