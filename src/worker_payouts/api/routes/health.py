"""Health check endpoints."""

import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from worker_payouts.api.dependencies import DbSession, get_services
from worker_payouts.container import Services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Database reachability and the payout backends in use."""

    status: str
    timestamp: datetime
    database: str
    provider: str
    task_queue: str | None = None


@router.get("/health", response_model=HealthResponse)
def health_check(
    db: DbSession,
    services: Annotated[Services, Depends(get_services)],
) -> HealthResponse:
    """Degraded when the database does not answer."""
    try:
        db.execute(text("SELECT 1"))
        database = "healthy"
    except SQLAlchemyError:
        logger.warning("Database health check failed", exc_info=True)
        database = "unhealthy"

    return HealthResponse(
        status="healthy" if database == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        database=database,
        provider=services.provider.provider_name,
        task_queue=services.queue.name if services.queue is not None else None,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check() -> dict[str, str]:
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
