"""API routes."""

from worker_payouts.api.routes.health import router as health_router
from worker_payouts.api.routes.worker_payments import router as worker_payments_router

__all__ = ["health_router", "worker_payments_router"]
