"""Celery application for deferred payout processing.

Run a worker with the periodic jobs:
    celery -A worker_payouts.celery_app worker --beat --loglevel=info
"""

from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from worker_payouts.config import Settings, get_settings


def create_celery_app(settings: Settings | None = None) -> Celery:
    """Create the Celery app from settings."""
    settings = settings or get_settings()

    app = Celery(
        "worker_payouts",
        broker=settings.celery_broker_url,
        backend=settings.celery_result_backend,
        include=["worker_payouts.tasks"],
    )
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        # A task is acknowledged only once it finished, so work held by a
        # worker that dies is redelivered
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        task_always_eager=settings.celery_task_always_eager,
        timezone="UTC",
    )

    # Beat schedule - same jobs as the process-pending and reconcile commands
    app.conf.beat_schedule = {
        "process-pending-payments": {
            "task": "worker_payouts.tasks.process_pending_payments_task",
            "schedule": crontab(minute="*/10"),
        },
        "reconcile-stuck-payments": {
            "task": "worker_payouts.tasks.reconcile_stuck_payments_task",
            "schedule": crontab(minute="*/15"),
        },
    }
    return app


app = create_celery_app()
