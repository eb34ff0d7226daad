"""
DJED ANALYTICS - Main Entry Point
api: HTTP surface with the scheduler inside. worker: scheduler only. once: a single sync cycle.
"""
import argparse
import asyncio
import signal
import sys

import uvicorn
from djed_analytics.config.settings import get_settings
from djed_analytics.sync.service import get_sync_service
from djed_analytics.utils.logger import setup_logging, get_logger

logger = get_logger("main")


def run_api():
    """Run the FastAPI application."""
    settings = get_settings()
    setup_logging()
    logger.info("starting_djed_analytics", version=settings.version, port=settings.port)
    uvicorn.run(
        "djed_analytics.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


async def run_worker():
    """Run the cron scheduler until SIGINT/SIGTERM; the lock is released on the way out."""
    service = get_sync_service()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await service.initialize()
    try:
        service.start_scheduler()
        logger.info("worker_started", cron=service.settings.sync.cron_schedule)
        await stop.wait()
        logger.info("worker_stopping")
    finally:
        await service.shutdown()


async def run_once() -> bool:
    service = get_sync_service()
    try:
        result = await service.run_once()
    finally:
        await service.shutdown()
    return result.status == "completed"


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Djed daily analytics sync")
    parser.add_argument("mode", nargs="?", choices=["api", "worker", "once"], default="api")
    args = parser.parse_args(argv)

    if args.mode == "api":
        run_api()
        return 0

    setup_logging()
    if args.mode == "worker":
        asyncio.run(run_worker())
        return 0
    return 0 if asyncio.run(run_once()) else 1


if __name__ == "__main__":
    sys.exit(main())
