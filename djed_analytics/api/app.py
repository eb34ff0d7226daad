"""
DJED ANALYTICS - FastAPI Application
Operational surface: /healthz, /metrics and a manual sync trigger.
"""
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from djed_analytics.config.settings import get_settings
from djed_analytics.sync.service import get_sync_service
from djed_analytics.utils.helpers import utc_now
from djed_analytics.utils.logger import get_logger, setup_logging

logger = get_logger("api")

# Application state
app_state: Dict[str, Any] = {
    "instance_id": str(uuid.uuid4())[:8],
    "started_at": None,
    "manual_runs": 0,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    setup_logging()
    settings = get_settings()
    app_state["started_at"] = utc_now().isoformat()

    logger.info("djed_analytics_starting",
                version=settings.version,
                instance=app_state["instance_id"],
                network=settings.chain.network)

    service = get_sync_service()
    await service.initialize()
    if settings.sync.scheduler_enabled:
        service.start_scheduler()

    logger.info("djed_analytics_ready")

    yield

    logger.info("djed_analytics_shutting_down")
    await service.shutdown()


app = FastAPI(
    title="Djed Analytics",
    description="Daily time-weighted analytics for the Djed stablecoin protocol",
    version="1.0.0",
    lifespan=lifespan,
)


# --- Health & Metrics -------------------------------------------

@app.get("/healthz", tags=["System"])
async def health_check():
    """Fast health check endpoint for load balancers and monitoring."""
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "instance": app_state["instance_id"],
            "uptime_since": app_state["started_at"],
            "timestamp": utc_now().isoformat(),
        },
    )


@app.get("/metrics", tags=["System"])
async def metrics():
    """Cycle counters, last cycle result, lock state and client stats."""
    settings = get_settings()
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.version,
            "instance_id": app_state["instance_id"],
            "started_at": app_state["started_at"],
            "manual_runs": app_state["manual_runs"],
        },
        "service": get_sync_service().stats,
    }


# --- Sync control -------------------------------------------------

@app.get("/api/v1/sync/status", tags=["Sync"])
async def sync_status():
    service = get_sync_service()
    if service.orchestrator is None:
        raise HTTPException(status_code=503, detail="sync service not initialized")
    last = service.orchestrator.stats.last_result
    return {
        "lock_held": service.lock.locked,
        "scheduler_running": bool(service.scheduler and service.scheduler.running),
        "last_result": last.to_dict() if last else None,
    }


@app.post("/api/v1/sync/run", tags=["Sync"])
async def run_sync():
    """Run one sync cycle now. Reports `skipped` when a cycle is already in progress."""
    service = get_sync_service()
    if service.orchestrator is None:
        raise HTTPException(status_code=503, detail="sync service not initialized")
    app_state["manual_runs"] += 1
    result = await service.orchestrator.run_cycle()
    logger.info("manual_sync_run", status=result.status)
    return result.to_dict()
