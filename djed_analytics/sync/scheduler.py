"""
DJED ANALYTICS - Cron Scheduler
Fires sync cycles on a cron expression. Each tick runs as its own task so a
slow cycle never delays the clock; an overlapping tick meets the held lock
and is skipped by the orchestrator.
"""
import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional, Set

from croniter import croniter

from djed_analytics.exceptions import ConfigurationError
from djed_analytics.utils.helpers import utc_now
from djed_analytics.utils.logger import get_logger

logger = get_logger("scheduler")


class CronScheduler:
    def __init__(self, expression: str, job: Callable[[], Awaitable[object]],
                 clock: Callable[[], datetime] = utc_now):
        if not croniter.is_valid(expression):
            raise ConfigurationError(f"invalid cron expression {expression!r}")
        self.expression = expression
        self.job = job
        self.clock = clock
        self._stop = asyncio.Event()
        self._tasks: Set[asyncio.Task] = set()
        self._runner: Optional[asyncio.Task] = None
        self.ticks = 0

    def next_fire(self, after: Optional[datetime] = None) -> datetime:
        return croniter(self.expression, after or self.clock()).get_next(datetime)

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._runner = asyncio.create_task(self.run())

    async def run(self) -> None:
        logger.info("scheduler_started", cron=self.expression)
        while not self._stop.is_set():
            fire_at = self.next_fire()
            wait = max(0.0, (fire_at - self.clock()).total_seconds())
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=wait)
                break
            except asyncio.TimeoutError:
                pass
            self._spawn()
        logger.info("scheduler_stopped", ticks=self.ticks)

    def _spawn(self) -> None:
        self.ticks += 1
        task = asyncio.create_task(self._tick(self.ticks))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _tick(self, tick: int) -> None:
        try:
            await self.job()
        except Exception as e:
            logger.exception("scheduled_job_failed", tick=tick, error=str(e))

    async def stop(self) -> None:
        """Stop firing and wait for cycles already running to finish."""
        self._stop.set()
        if self._runner is not None:
            await self._runner
            self._runner = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
