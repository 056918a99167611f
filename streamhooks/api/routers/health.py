"""
Health check endpoints for monitoring and orchestration.

``/health`` only reports that the process serves requests; ``/ready``
also checks the database and whether the webhook manager finished its
initialization.
"""

from datetime import datetime, timezone
from typing import Dict

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    service: str
    version: str
    timestamp: datetime


class ReadinessResponse(HealthResponse):
    """Readiness response with the individual checks."""

    checks: Dict[str, str]


router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check endpoint",
)
async def health_check(request: Request) -> HealthResponse:
    return HealthResponse(
        status="healthy",
        service=request.app.title,
        version=request.app.version,
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness check endpoint",
    responses={503: {"description": "A dependency is not ready"}},
)
async def readiness_check(request: Request):
    """
    Report whether the service can do useful work.

    Returns 503 while the database is unreachable. The webhook manager is
    reported as ``initializing`` until its stored subscriptions are loaded,
    which does not fail the check.
    """
    database = request.app.state.database
    manager = request.app.state.webhook_manager

    db_health = await database.health()
    checks = {
        "database": db_health["database"],
        "webhooks": "ready" if manager.is_initialized else "initializing",
    }
    ready = db_health["status"] == "healthy"
    body = ReadinessResponse(
        status="ready" if ready else "not_ready",
        service=request.app.title,
        version=request.app.version,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(mode="json"),
    )
