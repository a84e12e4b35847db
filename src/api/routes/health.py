"""
Health check endpoints.

Provides system health information for monitoring.
"""

from fastapi import APIRouter, HTTPException, Request
import structlog

from src.core.config import settings
from src.persistence.database import check_database_health

log = structlog.get_logger(__name__)

router = APIRouter()


def _machine_health(request: Request) -> dict:
    machine = getattr(request.app.state, "machine", None)
    if machine is None:
        return {"status": "not_initialized"}
    return {
        "status": "healthy" if machine.storage_available else "in_memory",
        "hydrated": machine.is_hydrated,
        "sessions": len(machine.sessions),
        "state": machine.current_state.value,
    }


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint.

    Returns:
        Database and state machine status. Running in memory after a
        storage failure still counts as healthy.
    """
    db_health = await check_database_health()

    overall_status = "healthy" if db_health["status"] == "healthy" else "unhealthy"

    return {
        "status": overall_status,
        "version": "0.1.0",
        "debug": settings.debug,
        "components": {
            "database": db_health,
            "state_machine": _machine_health(request),
        },
    }


@router.get("/health/live")
async def liveness():
    """Liveness probe: 200 while the process is running."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness(request: Request):
    """Readiness probe: persisted state restored and database reachable."""
    machine = getattr(request.app.state, "machine", None)
    if machine is None or not machine.is_hydrated:
        raise HTTPException(status_code=503, detail="State not hydrated")

    db_health = await check_database_health()
    if db_health["status"] != "healthy":
        raise HTTPException(status_code=503, detail="Database not ready")

    return {"status": "ready"}
