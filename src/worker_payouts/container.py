"""Service wiring shared by the API, the CLI and Celery workers."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from worker_payouts.config import PayoutConfig, Settings, get_settings
from worker_payouts.database import init_db
from worker_payouts.events import EventCategory, EventEmitter, log_event
from worker_payouts.providers import (
    PayoutProvider,
    RazorpayPayoutProvider,
    StubPayoutProvider,
)
from worker_payouts.services import (
    PayoutAnalytics,
    PayoutOrchestrator,
    ReconciliationService,
    TTLCache,
)
from worker_payouts.tasks import (
    CeleryPayoutQueue,
    ImmediatePayoutQueue,
    bind_services,
    unbind_services,
)

logger = logging.getLogger(__name__)


def build_provider(settings: Settings) -> PayoutProvider:
    """Instantiate the payout provider named by PAYOUT_PROVIDER."""
    if settings.payout_provider == "stub":
        logger.warning("Using the in-memory stub payout provider; no money will move")
        return StubPayoutProvider()
    if settings.payout_provider == "razorpay":
        if not settings.razorpay_key_id or not settings.razorpay_key_secret:
            raise ValueError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET must be set")
        return RazorpayPayoutProvider(
            settings.razorpay_key_id,
            settings.razorpay_key_secret,
            account_number=settings.razorpay_account_number,
            timeout_seconds=settings.provider_timeout_seconds,
        )
    raise ValueError(f"Unknown payout provider: {settings.payout_provider}")


@dataclass
class Services:
    """Application-scoped service graph."""

    config: PayoutConfig
    session_factory: sessionmaker[Session]
    provider: PayoutProvider
    emitter: EventEmitter
    cache: TTLCache
    orchestrator: PayoutOrchestrator
    reconciliation: ReconciliationService
    analytics: PayoutAnalytics
    queue: CeleryPayoutQueue | ImmediatePayoutQueue | None = None

    def start(self) -> None:
        """Serve in-process task executions (eager mode) from this graph."""
        if isinstance(self.queue, CeleryPayoutQueue):
            bind_services(self)

    def close(self) -> None:
        unbind_services(self)
        close = getattr(self.provider, "close", None)
        if callable(close):
            close()


def build_services(
    config: PayoutConfig,
    session_factory: sessionmaker[Session],
    provider: PayoutProvider,
    *,
    cache_ttl_seconds: float = 300.0,
    queue_mode: str = "celery",
) -> Services:
    """Wire orchestrator, reconciliation, analytics and the deferred queue.

    queue_mode is "celery" (process_payment_task after the configured
    delay), "immediate" (inline) or "none" (payments wait for the batch run).
    """
    emitter = EventEmitter()
    emitter.on_all(log_event)

    cache = TTLCache(cache_ttl_seconds)
    analytics = PayoutAnalytics(session_factory, cache)
    # Any payment status change makes cached summaries stale
    emitter.on_category(EventCategory.PAYMENT, lambda event: analytics.invalidate())
    emitter.on_category(EventCategory.RECONCILIATION, lambda event: analytics.invalidate())

    orchestrator = PayoutOrchestrator(session_factory, provider, config, emitter=emitter)

    queue: CeleryPayoutQueue | ImmediatePayoutQueue | None
    if queue_mode == "celery":
        queue = CeleryPayoutQueue()
    elif queue_mode == "immediate":
        queue = ImmediatePayoutQueue(orchestrator.process_if_pending)
    elif queue_mode == "none":
        queue = None
    else:
        raise ValueError(f"Unknown queue mode: {queue_mode}")
    orchestrator.task_queue = queue

    reconciliation = ReconciliationService(session_factory, provider, config, emitter=emitter)

    return Services(
        config=config,
        session_factory=session_factory,
        provider=provider,
        emitter=emitter,
        cache=cache,
        orchestrator=orchestrator,
        reconciliation=reconciliation,
        analytics=analytics,
        queue=queue,
    )


def build_services_from_settings(
    settings: Settings | None = None, *, queue_mode: str = "celery"
) -> Services:
    """Service graph for the API, the CLI and Celery workers, from the environment."""
    settings = settings or get_settings()
    _, session_factory = init_db()
    return build_services(
        settings.payout_config(),
        session_factory,
        build_provider(settings),
        cache_ttl_seconds=settings.analytics_cache_ttl_seconds,
        queue_mode=queue_mode,
    )
