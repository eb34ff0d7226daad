"""
DJED ANALYTICS - Sync Orchestrator

One cycle:
    1. take the sync lock (or skip the tick)
    2. rollback check
    3. per metric: populate (table empty) or update (latest day older than yesterday)
    4. one shared fetch feeds every pipeline; pipelines run concurrently
    5. advance the anchor, release the lock
"""
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from djed_analytics.config.settings import get_settings
from djed_analytics.data.batching import gather_or_cancel
from djed_analytics.data.models import Snapshot
from djed_analytics.db.repository import AnalyticsRepository
from djed_analytics.exceptions import RollbackExceedsHistory
from djed_analytics.sync.lock import SyncLock
from djed_analytics.sync.metrics import ALL_METRICS, MetricDefinition, build_records
from djed_analytics.sync.rollback import ANALYTICS_STREAM, RollbackDetector
from djed_analytics.sync.snapshots import SnapshotLoader
from djed_analytics.utils.helpers import utc_now
from djed_analytics.utils.logger import get_logger

logger = get_logger("orchestrator")


@dataclass
class MetricPlan:
    metric: MetricDefinition
    mode: str  # populate | update | up_to_date
    latest_day: Optional[str] = None


@dataclass
class CycleResult:
    status: str  # completed | skipped | failed
    started_at: datetime
    finished_at: Optional[datetime] = None
    rolled_back: bool = False
    populated: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    up_to_date: List[str] = field(default_factory=list)
    inserted: Dict[str, int] = field(default_factory=dict)
    snapshots: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


@dataclass
class SyncStats:
    cycles_started: int = 0
    cycles_completed: int = 0
    cycles_skipped: int = 0
    cycles_failed: int = 0
    rollbacks: int = 0
    rows_inserted: Dict[str, int] = field(default_factory=dict)
    last_result: Optional[CycleResult] = None

    def record(self, result: CycleResult) -> None:
        if result.status == "skipped":
            self.cycles_skipped += 1
            return
        self.last_result = result
        if result.status == "completed":
            self.cycles_completed += 1
        else:
            self.cycles_failed += 1
        if result.rolled_back:
            self.rollbacks += 1
        for name, count in result.inserted.items():
            self.rows_inserted[name] = self.rows_inserted.get(name, 0) + count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycles_started": self.cycles_started,
            "cycles_completed": self.cycles_completed,
            "cycles_skipped": self.cycles_skipped,
            "cycles_failed": self.cycles_failed,
            "rollbacks": self.rollbacks,
            "rows_inserted": dict(self.rows_inserted),
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class SyncOrchestrator:
    """Runs analytics sync cycles under the sync lock."""

    def __init__(
        self,
        loader: SnapshotLoader,
        repository: AnalyticsRepository,
        rollback_detector: RollbackDetector,
        lock: SyncLock,
        metrics: Sequence[MetricDefinition] = ALL_METRICS,
        clock: Callable[[], datetime] = utc_now,
        lookback_days: Optional[int] = None,
    ):
        self.loader = loader
        self.repository = repository
        self.rollback_detector = rollback_detector
        self.lock = lock
        self.metrics = tuple(metrics)
        self.clock = clock
        self.lookback_days = (
            lookback_days if lookback_days is not None
            else get_settings().sync.update_lookback_days
        )
        self.stats = SyncStats()

    async def run_cycle(self) -> CycleResult:
        result = CycleResult(status="completed", started_at=self.clock())
        if not await self.lock.try_acquire():
            logger.info("sync_cycle_skipped", reason="lock_held")
            result.status = "skipped"
            result.finished_at = self.clock()
            self.stats.record(result)
            return result

        self.stats.cycles_started += 1
        logger.info("sync_cycle_started")
        try:
            await self._run(result)
        except RollbackExceedsHistory as e:
            result.status = "failed"
            result.error = str(e)
            logger.error("rollback_exceeds_history", error=str(e))
        except Exception as e:
            result.status = "failed"
            result.error = f"{type(e).__name__}: {e}"
            logger.exception("sync_cycle_failed", error=str(e))
        finally:
            await self.lock.release()
            result.finished_at = self.clock()
            self.stats.record(result)

        logger.info("sync_cycle_finished", status=result.status, inserted=result.inserted,
                    populated=result.populated, updated=result.updated,
                    seconds=round((result.finished_at - result.started_at).total_seconds(), 2))
        return result

    async def plan(self, today: date) -> List[MetricPlan]:
        """Populate empty tables; update tables whose latest day is before yesterday."""
        yesterday = (today - timedelta(days=1)).isoformat()
        plans = []
        for metric in self.metrics:
            if await self.repository.count(metric.model) == 0:
                plans.append(MetricPlan(metric=metric, mode="populate"))
                continue
            latest = await self.repository.latest(metric.model)
            mode = "up_to_date" if latest.day >= yesterday else "update"
            plans.append(MetricPlan(metric=metric, mode=mode, latest_day=latest.day))
        return plans

    async def _run(self, result: CycleResult) -> None:
        outcome = await self.rollback_detector.check()
        result.rolled_back = outcome.rolled_back

        today = self.clock().date()
        plans = await self.plan(today)
        result.populated = [p.metric.name for p in plans if p.mode == "populate"]
        result.updated = [p.metric.name for p in plans if p.mode == "update"]
        result.up_to_date = [p.metric.name for p in plans if p.mode == "up_to_date"]
        for name in result.up_to_date:
            logger.info("metric_up_to_date", metric=name)

        active = [p for p in plans if p.mode != "up_to_date"]
        if active:
            snapshots = await self._fetch(active)
            result.snapshots = len(snapshots)
            counts = await gather_or_cancel(
                *(self._run_metric(p, list(snapshots), today) for p in active)
            )
            result.inserted = {p.metric.name: n for p, n in zip(active, counts)}

        latest = await self.repository.latest_block()
        if latest is not None:
            await self.repository.set_anchor(ANALYTICS_STREAM, latest)

    async def _fetch(self, plans: List[MetricPlan]) -> List[Snapshot]:
        """
        One fetch for every active pipeline. Any populate needs full history,
        which also covers every update window.
        """
        if any(p.mode == "populate" for p in plans):
            logger.info("fetching_full_history", metrics=[p.metric.name for p in plans])
            return await self.loader.load()
        oldest = min(date.fromisoformat(p.latest_day) for p in plans)
        since = _day_start(oldest - timedelta(days=self.lookback_days))
        logger.info("fetching_since", since=since.isoformat(), metrics=[p.metric.name for p in plans])
        return await self.loader.load(since=since)

    async def _run_metric(self, plan: MetricPlan, snapshots: List[Snapshot], today: date) -> int:
        records = build_records(plan.metric, snapshots, today, after_day=plan.latest_day)
        if not records:
            logger.info("metric_nothing_to_insert", metric=plan.metric.name, mode=plan.mode)
            return 0
        return await self.repository.insert_ignore(plan.metric.model, records)
