"""Payout domain events package.

This package provides:
- Typed domain events for payment and ledger operations
- Event emitter for publishing events after commit
"""

from worker_payouts.events.types import (
    # Base
    DomainEvent,
    EventCategory,
    EventMetadata,
    # Payment Events
    PayoutFailed,
    PayoutPaid,
    PayoutProcessingStarted,
    WorkerPaymentCreated,
    # Ledger Events
    EarningsCredited,
    EarningsDebited,
    EarningsHeld,
    EarningsReleased,
    LedgerEvent,
    # Reconciliation Events
    StuckPaymentReconciled,
)
from worker_payouts.events.emitter import EventEmitter, EventHandler, log_event

__all__ = [
    # Base
    "DomainEvent",
    "EventCategory",
    "EventMetadata",
    # Payment Events
    "PayoutFailed",
    "PayoutPaid",
    "PayoutProcessingStarted",
    "WorkerPaymentCreated",
    # Ledger Events
    "EarningsCredited",
    "EarningsDebited",
    "EarningsHeld",
    "EarningsReleased",
    "LedgerEvent",
    # Reconciliation Events
    "StuckPaymentReconciled",
    # Emitter
    "EventEmitter",
    "EventHandler",
    "log_event",
]
