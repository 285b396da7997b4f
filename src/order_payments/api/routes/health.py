"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from order_payments.api.dependencies import DbSession, Store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response.

    settings is "degraded" while the settings store serves code defaults
    because the database could not be read.
    """

    status: str
    timestamp: datetime
    database: str
    settings: str


class ReadinessResponse(BaseModel):
    status: str
    settings_loaded: bool
    webhooks: dict[str, bool]


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession, store: Store) -> HealthResponse:
    """Check API, database and settings health."""
    db_healthy = True
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_healthy = False
        logger.warning("Database health check failed: %s", e)

    return HealthResponse(
        status="healthy" if db_healthy and not store.degraded else "degraded",
        timestamp=datetime.now(timezone.utc),
        database="healthy" if db_healthy else "unhealthy",
        settings="degraded" if store.degraded else "healthy",
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    responses={503: {"model": ReadinessResponse}},
)
async def readiness_check(request: Request, store: Store) -> JSONResponse:
    """Ready once settings are loaded; lists which webhooks can be verified."""
    webhooks = {
        name: gateway.webhook_configured
        for name, gateway in request.app.state.gateways.items()
    }
    body = ReadinessResponse(
        status="ready" if store.loaded else "starting",
        settings_loaded=store.loaded,
        webhooks=webhooks,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if store.loaded else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(),
    )


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
