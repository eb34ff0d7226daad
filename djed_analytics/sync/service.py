"""
DJED ANALYTICS - Sync Service
Wires settings, store, chain adapter, orchestrator and scheduler together
and owns their lifecycle.
"""
from typing import Any, Dict, Optional

from djed_analytics.config.settings import AppSettings, get_settings
from djed_analytics.data.adapters.blockfrost_adapter import BlockfrostAdapter
from djed_analytics.db.repository import AnalyticsRepository
from djed_analytics.db.schema import dispose_db, init_db
from djed_analytics.exceptions import ConfigurationError
from djed_analytics.sync.lock import InProcessSyncLock, LeaseSyncLock, SyncLock
from djed_analytics.sync.orchestrator import CycleResult, SyncOrchestrator
from djed_analytics.sync.rollback import RollbackDetector
from djed_analytics.sync.scheduler import CronScheduler
from djed_analytics.sync.snapshots import SnapshotLoader
from djed_analytics.utils.logger import get_logger

logger = get_logger("sync_service")


class SyncService:
    """Owns one orchestrator and, optionally, the cron scheduler driving it."""

    def __init__(self, settings: Optional[AppSettings] = None):
        self.settings = settings or get_settings()
        self.session_factory = None
        self.adapter: Optional[BlockfrostAdapter] = None
        self.orchestrator: Optional[SyncOrchestrator] = None
        self.scheduler: Optional[CronScheduler] = None
        self.lock: Optional[SyncLock] = None
        self._initialized = False

    def _validate(self) -> None:
        chain = self.settings.chain
        missing = [name for name, value in (
            ("BLOCKFROST_PROJECT_ID", chain.blockfrost_project_id),
            ("POOL_ASSET_ID", chain.pool_asset_id),
            ("ORACLE_ASSET_ID", chain.oracle_asset_id),
        ) if not value]
        if missing:
            raise ConfigurationError(f"missing configuration: {', '.join(missing)}")

    def _build_lock(self) -> SyncLock:
        backend = self.settings.sync.lock_backend.lower()
        if backend == "memory":
            return InProcessSyncLock()
        if backend == "database":
            return LeaseSyncLock(self.session_factory, ttl_seconds=self.settings.sync.lock_ttl_seconds)
        raise ConfigurationError(f"unknown lock backend {backend!r}")

    async def initialize(self) -> None:
        if self._initialized:
            return
        self._validate()
        self.session_factory = await init_db(self.settings.database.db_url,
                                             echo=self.settings.database.echo_sql)
        self.adapter = BlockfrostAdapter()
        await self.adapter.connect()
        repository = AnalyticsRepository(self.session_factory)
        self.lock = self._build_lock()
        self.orchestrator = SyncOrchestrator(
            loader=SnapshotLoader(self.adapter),
            repository=repository,
            rollback_detector=RollbackDetector(self.adapter, repository),
            lock=self.lock,
        )
        self._initialized = True
        logger.info("sync_service_initialized", db=self.settings.database.db_url.split("://")[0],
                    lock=self.settings.sync.lock_backend)

    def start_scheduler(self) -> CronScheduler:
        if self.orchestrator is None:
            raise RuntimeError("initialize() must run before start_scheduler()")
        if self.scheduler is None:
            self.scheduler = CronScheduler(self.settings.sync.cron_schedule, self.orchestrator.run_cycle)
        self.scheduler.start()
        return self.scheduler

    async def run_once(self) -> CycleResult:
        await self.initialize()
        return await self.orchestrator.run_cycle()

    async def shutdown(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.stop()
        if self.lock is not None and self.lock.locked:
            await self.lock.release()
        if self.adapter is not None:
            await self.adapter.disconnect()
        if self.session_factory is not None:
            await dispose_db(self.session_factory)
        self._initialized = False
        logger.info("sync_service_stopped")

    @property
    def stats(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "initialized": self._initialized,
            "scheduler_running": bool(self.scheduler and self.scheduler.running),
            "cron": self.settings.sync.cron_schedule,
            "lock_held": bool(self.lock and self.lock.locked),
        }
        if self.orchestrator is not None:
            data["sync"] = self.orchestrator.stats.to_dict()
        if self.adapter is not None:
            data["chain_client"] = self.adapter.stats
        return data


# Singleton
_service: Optional[SyncService] = None


def get_sync_service() -> SyncService:
    global _service
    if _service is None:
        _service = SyncService()
    return _service
