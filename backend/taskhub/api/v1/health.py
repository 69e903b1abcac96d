"""Health check endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter, Request, Response, status
from sqlalchemy import text

router = APIRouter()
logger = structlog.get_logger()


@router.get("/health")
async def health_check(request: Request) -> dict[str, str]:
    """Liveness check for load balancers; touches nothing external."""
    settings = request.app.state.settings
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check(request: Request, response: Response) -> dict[str, Any]:
    """
    Readiness check.

    Opens a session from the application's session factory to confirm the
    database answers, and reports the realtime side: event deliveries still
    in flight and open WebSocket connections. Answers 503 when the database
    is unreachable.
    """
    state = request.app.state
    checks: dict[str, str] = {}

    try:
        async with state.session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        logger.warning("readiness_database_unreachable", error=str(e))
        checks["database"] = f"unhealthy: {e}"

    overall_status = "healthy" if all(v == "healthy" for v in checks.values()) else "unhealthy"
    if overall_status != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": overall_status,
        "version": state.settings.app_version,
        "checks": checks,
        "realtime": {
            "pending_events": state.events.pending,
            "connections": state.connections.connection_count,
        },
    }
