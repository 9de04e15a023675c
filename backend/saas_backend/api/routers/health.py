"""
Health check endpoints for monitoring and orchestration.

/health reports that the process is up. /ready also checks the database and
the event dispatcher, and answers 503 when either is unavailable.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel

from saas_backend.core.config import settings
from saas_backend.core.database import get_db_health


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    service: str
    version: str
    timestamp: datetime
    database: Optional[str] = None
    dispatcher: Optional[str] = None
    fallback_queue: Optional[int] = None


router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check endpoint",
)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        service=settings.APP_NAME,
        version=settings.APP_VERSION,
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/ready",
    response_model=HealthResponse,
    summary="Readiness check endpoint",
    description="Checks database connectivity and the event dispatcher.",
)
async def readiness_check(request: Request, response: Response) -> HealthResponse:
    db_health = await get_db_health(request.app.state.engine)

    dispatcher = getattr(request.app.state, "dispatcher", None)
    if not settings.EVENT_DISPATCHER_ENABLED:
        dispatcher_state = "disabled"
    elif dispatcher is not None and dispatcher.is_running:
        dispatcher_state = "running"
    else:
        dispatcher_state = "stopped"

    ready = db_health["status"] == "healthy" and dispatcher_state != "stopped"
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="ready" if ready else "not_ready",
        service=settings.APP_NAME,
        version=settings.APP_VERSION,
        timestamp=datetime.now(timezone.utc),
        database=db_health["database"],
        dispatcher=dispatcher_state,
        fallback_queue=request.app.state.event_bus.fallback_size,
    )
