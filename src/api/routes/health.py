from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from api.dependencies import DB, Supervisor, WSManager
from core.constants import get_settings
from utils.db_utils import check_pool_health

router = APIRouter()

READINESS_PROBE_TIMEOUT = 5.0


def _degraded_reasons(database: dict[str, Any], subscriptions: dict[str, Any]) -> list[str]:
    reasons = []
    if not database["healthy"]:
        reasons.append("database")
    if subscriptions.get("shutting_down", False):
        reasons.append("shutting_down")
    return reasons


@router.get("/health")
async def health_check(db: DB, ws_manager: WSManager, supervisor: Supervisor, request: Request) -> dict[str, Any]:
    """Pipeline status: database pool, push subscriptions, in-flight turns and the event bus.

    ``status`` is "degraded" when the database probe fails or shutdown has begun.
    """
    settings = get_settings()
    database = await check_pool_health(db)
    subscriptions = ws_manager.get_stats()

    event_bus = getattr(request.app.state, "event_bus", None)
    reasons = _degraded_reasons(database, subscriptions)

    report: dict[str, Any] = {
        "status": "degraded" if reasons else "healthy",
        "version": settings.app_version,
        "pipeline_mode": settings.pipeline_mode,
        "database": database,
        "websocket": subscriptions,
        "tasks": supervisor.get_stats(),
        "event_bus": event_bus.get_stats() if event_bus is not None else {"enabled": False},
    }
    if reasons:
        report["degraded"] = reasons
    return report


@router.get("/health/ready")
async def readiness_check(db: DB) -> JSONResponse:
    """Ready once the database answers; 503 otherwise."""
    try:
        async with db.acquire(timeout=READINESS_PROBE_TIMEOUT) as conn:
            await conn.fetchval("SELECT 1")
    except Exception as e:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"ready": False, "error": str(e)})
    return JSONResponse(content={"ready": True})


@router.get("/health/live")
async def liveness_check() -> dict[str, Any]:
    return {"alive": True}
