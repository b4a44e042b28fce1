"""FastAPI dependencies for dependency injection."""

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from worker_payouts.container import Services
from worker_payouts.services import (
    PayoutAnalytics,
    PayoutOrchestrator,
    ReconciliationService,
)


def get_services(request: Request) -> Services:
    """Application-scoped services built in the lifespan handler."""
    return request.app.state.services


def get_db_session(
    services: Annotated[Services, Depends(get_services)],
) -> Generator[Session, None, None]:
    """Get database session dependency."""
    with services.session_factory() as session:
        yield session


def get_orchestrator(services: Annotated[Services, Depends(get_services)]) -> PayoutOrchestrator:
    return services.orchestrator


def get_reconciliation(
    services: Annotated[Services, Depends(get_services)],
) -> ReconciliationService:
    return services.reconciliation


def get_analytics(services: Annotated[Services, Depends(get_services)]) -> PayoutAnalytics:
    return services.analytics


# Type aliases for cleaner dependency injection
DbSession = Annotated[Session, Depends(get_db_session)]
Orchestrator = Annotated[PayoutOrchestrator, Depends(get_orchestrator)]
Reconciliation = Annotated[ReconciliationService, Depends(get_reconciliation)]
Analytics = Annotated[PayoutAnalytics, Depends(get_analytics)]
