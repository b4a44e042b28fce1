"""Payout services package."""

from worker_payouts.services.analytics import PayoutAnalytics, PayoutSummary, StatusTotals
from worker_payouts.services.booking_store import (
    BookingSnapshot,
    BookingStore,
    SqlBookingStore,
)
from worker_payouts.services.cache import TTLCache
from worker_payouts.services.earnings_ledger import (
    EarningsBalance,
    EarningsLedger,
    LedgerPosting,
    TransactionType,
)
from worker_payouts.services.payout_orchestrator import (
    BatchResult,
    FundAccountResolver,
    PaymentCreated,
    PayoutOrchestrator,
    PayoutResult,
    PayoutTaskQueue,
    WebhookOutcome,
    WorkerPaymentsPage,
    compute_fee_split,
)
from worker_payouts.services.reconciliation import (
    ReconciliationResult,
    ReconciliationService,
)
from worker_payouts.services.state_machine import (
    InvalidTransitionError,
    PaymentStateMachine,
    PaymentStatus,
)

__all__ = [
    # Analytics
    "PayoutAnalytics",
    "PayoutSummary",
    "StatusTotals",
    "TTLCache",
    # Bookings
    "BookingSnapshot",
    "BookingStore",
    "SqlBookingStore",
    # Ledger
    "EarningsBalance",
    "EarningsLedger",
    "LedgerPosting",
    "TransactionType",
    # Payout Orchestrator
    "BatchResult",
    "FundAccountResolver",
    "PaymentCreated",
    "PayoutOrchestrator",
    "PayoutResult",
    "PayoutTaskQueue",
    "WebhookOutcome",
    "WorkerPaymentsPage",
    "compute_fee_split",
    # Reconciliation
    "ReconciliationResult",
    "ReconciliationService",
    # State machine
    "InvalidTransitionError",
    "PaymentStateMachine",
    "PaymentStatus",
]
