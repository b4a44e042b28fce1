"""ORM models."""

from worker_payouts.models.base import Base, TimestampMixin, UpdatedAtMixin
from worker_payouts.models.booking import Booking, Customer, Worker
from worker_payouts.models.payout import (
    EarningsTransaction,
    WorkerEarnings,
    WorkerFundAccount,
    WorkerPayment,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "UpdatedAtMixin",
    "Booking",
    "Customer",
    "Worker",
    "EarningsTransaction",
    "WorkerEarnings",
    "WorkerFundAccount",
    "WorkerPayment",
]
