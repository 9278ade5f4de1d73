"""
Health check endpoints: liveness, readiness and matching engine status.
"""

import time

from fastapi import APIRouter, Depends

from app.config import settings
from app.db.pool import db_health_check
from app.features.matching.dependencies import get_connection_manager, get_matching_engine
from app.features.matching.engine import MatchingEngine
from app.services.realtime.connection_manager import ConnectionManager

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "support-chat"}


@router.get("/readyz")
async def readyz(engine: MatchingEngine = Depends(get_matching_engine)):
    """
    Readiness check: database pool, matching scheduler, configuration.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)

        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"].update(db_health["pool_stats"])
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")

        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    # 2) Matching scheduler
    job_health = engine.job.health_check()
    checks["matching"] = {
        "ok": job_health.get("healthy", False),
        "scheduled": job_health.get("scheduled", False),
        "last_run_time": job_health.get("last_run_time"),
    }
    if "warning" in job_health:
        checks["matching"]["warning"] = job_health["warning"]
    overall_ok = overall_ok and checks["matching"]["ok"]

    # 3) Configuration
    config_issues = []
    if not settings.DATABASE_URL:
        config_issues.append("DATABASE_URL not set")
    if not settings.AUTH_ISSUER_URL:
        config_issues.append("AUTH_ISSUER_URL not set")
    if settings.WAITER_HEARTBEAT_TIMEOUT_SECONDS <= settings.MATCHING_TICK_INTERVAL_SECONDS:
        config_issues.append("WAITER_HEARTBEAT_TIMEOUT_SECONDS must exceed the tick interval")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/matching")
async def matching_health(
    engine: MatchingEngine = Depends(get_matching_engine),
    connections: ConnectionManager = Depends(get_connection_manager),
):
    """Scheduler status, last tick metrics and registry counts."""
    status = engine.job.get_job_status()
    status["health"] = engine.job.health_check()
    status["realtime_connections"] = connections.connection_count()
    return status
