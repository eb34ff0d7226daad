"""
DJED ANALYTICS - Sync Lock
Non-blocking mutual exclusion for sync cycles. A tick that finds the lock
held is skipped, never queued.
"""
import os
import socket
import time
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from djed_analytics.db.schema import SyncLease
from djed_analytics.utils.logger import get_logger

logger = get_logger("sync_lock")


class SyncLock(ABC):
    """try_acquire() never waits: it either takes the lock or reports that someone else has it."""

    @abstractmethod
    async def try_acquire(self) -> bool:
        pass

    @abstractmethod
    async def release(self) -> None:
        pass

    @property
    @abstractmethod
    def locked(self) -> bool:
        pass


class InProcessSyncLock(SyncLock):
    """Single-instance deployments: a flag guarded by the event loop."""

    def __init__(self):
        self._held = False

    async def try_acquire(self) -> bool:
        # no await between the check and the set, so this is atomic on one loop
        if self._held:
            return False
        self._held = True
        return True

    async def release(self) -> None:
        self._held = False

    @property
    def locked(self) -> bool:
        return self._held


class LeaseSyncLock(SyncLock):
    """
    Multi-instance deployments: a lease row in the shared store.

    A lease that outlived its TTL belongs to a crashed holder and is taken
    over by the next caller. release() only removes our own lease.
    """

    def __init__(self, session_factory: async_sessionmaker, ttl_seconds: int = 900,
                 name: str = "analytics", holder: Optional[str] = None):
        self.session_factory = session_factory
        self.ttl_ms = ttl_seconds * 1000
        self.name = name
        self.holder = holder or f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"
        self._held = False

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    async def try_acquire(self) -> bool:
        now = self._now_ms()
        try:
            acquired = await self._claim(now)
        except IntegrityError:
            # another instance inserted the lease first
            acquired = False
        if acquired:
            self._held = True
        return acquired

    async def _claim(self, now: int) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                lease = (await session.execute(
                    select(SyncLease).where(SyncLease.name == self.name).with_for_update()
                )).scalars().first()
                if lease is not None and lease.expires_at_ms > now:
                    logger.debug("lease_held", name=self.name, holder=lease.holder)
                    return False
                if lease is None:
                    session.add(SyncLease(name=self.name, holder=self.holder,
                                          expires_at_ms=now + self.ttl_ms))
                else:
                    logger.warning("stale_lease_taken_over", name=self.name,
                                   previous_holder=lease.holder)
                    lease.holder = self.holder
                    lease.expires_at_ms = now + self.ttl_ms
        return True

    async def release(self) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(SyncLease).where(SyncLease.name == self.name,
                                            SyncLease.holder == self.holder)
                )
        self._held = False

    @property
    def locked(self) -> bool:
        return self._held
