"""Deferred payout processing on Celery.

Newly created payments are submitted to process_payment_task with the
configured countdown. Delivery is at-least-once (late acknowledgement,
redelivery when a worker is lost): the task re-checks that the payment is
still PENDING before doing anything, so duplicates and late deliveries are
harmless. Payments that never reach a worker stay PENDING and are picked up
by the periodic process_pending_payments_task.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Callable
from uuid import UUID

from kombu.exceptions import OperationalError as BrokerError
from sqlalchemy.exc import OperationalError

from worker_payouts.celery_app import app
from worker_payouts.errors import InsufficientBalanceError

if TYPE_CHECKING:
    from worker_payouts.container import Services

logger = logging.getLogger(__name__)

PayoutHandler = Callable[[UUID], Any]

_bound_services: Services | None = None


def bind_services(services: Services) -> None:
    """Run tasks executed in this process against an existing service graph."""
    global _bound_services
    _bound_services = services


def unbind_services(services: Services) -> None:
    global _bound_services
    if _bound_services is services:
        _bound_services = None


@lru_cache(maxsize=1)
def _worker_services() -> Services:
    from worker_payouts.container import build_services_from_settings

    return build_services_from_settings(queue_mode="none")


def get_task_services() -> Services:
    """Services for task execution: the bound graph, else one built from settings."""
    if _bound_services is not None:
        return _bound_services
    return _worker_services()


@app.task(max_retries=3, autoretry_for=(OperationalError,), retry_backoff=True)
def process_payment_task(payment_id: str) -> dict[str, Any]:
    """Process a single payment if it is still PENDING."""
    orchestrator = get_task_services().orchestrator
    try:
        result = orchestrator.process_if_pending(UUID(payment_id))
    except InsufficientBalanceError as e:
        # Already recorded as FAILED
        logger.warning("Payment %s failed: %s", payment_id, e.message)
        return {"success": False, "payment_id": payment_id, "error": e.message}

    if result is None:
        return {"success": True, "payment_id": payment_id, "skipped": True}
    return {
        "success": result.succeeded,
        "payment_id": payment_id,
        "status": result.status,
        "error": result.failure_reason,
    }


@app.task
def process_pending_payments_task() -> dict[str, Any]:
    """Sweep every PENDING payment."""
    result = get_task_services().orchestrator.process_pending_payments(actor_type="scheduler")
    logger.info(
        "Scheduled run processed %d payments: %d paid, %d failed",
        result.processed,
        result.successful,
        result.failed,
    )
    return {
        "processed": result.processed,
        "successful": result.successful,
        "failed": result.failed,
    }


@app.task
def reconcile_stuck_payments_task(older_than_minutes: int | None = None) -> dict[str, Any]:
    """Resolve payments left in PROCESSING."""
    result = get_task_services().reconciliation.reconcile_stuck_payments(older_than_minutes)
    return {
        "checked": result.checked,
        "paid": result.paid,
        "failed": result.failed,
        "still_processing": result.still_processing,
        "errors": len(result.errors),
    }


class CeleryPayoutQueue:
    """Submits new payments to process_payment_task."""

    name = "celery"

    def submit(self, payment_id: UUID, delay_seconds: float = 0.0) -> None:
        try:
            process_payment_task.apply_async(
                args=[str(payment_id)], countdown=max(delay_seconds, 0.0)
            )
        except BrokerError:
            logger.exception(
                "Could not queue payment %s; it stays PENDING for the scheduled run",
                payment_id,
            )
            return
        logger.debug("Queued payment %s (delay %.1fs)", payment_id, delay_seconds)


class ImmediatePayoutQueue:
    """Runs the handler inline on submit, ignoring the delay.

    Used by tests that want processing without a broker.
    """

    name = "immediate"

    def __init__(self, handler: PayoutHandler):
        self._handler = handler

    def submit(self, payment_id: UUID, delay_seconds: float = 0.0) -> None:
        try:
            self._handler(payment_id)
        except Exception:
            logger.exception("Processing of payment %s failed", payment_id)
