"""Payout analytics for the admin dashboard."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from worker_payouts.errors import ValidationError
from worker_payouts.models import WorkerPayment
from worker_payouts.services.cache import TTLCache
from worker_payouts.services.earnings_ledger import CENT
from worker_payouts.services.state_machine import PaymentStatus


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


def _as_utc(value: datetime | None) -> datetime | None:
    """Normalize to UTC; naive datetimes are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class StatusTotals:
    """Count and sums of the payments in one status."""

    count: int = 0
    amount: Decimal = Decimal("0.00")
    platform_fee: Decimal = Decimal("0.00")
    worker_amount: Decimal = Decimal("0.00")

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "amount": str(self.amount),
            "platform_fee": str(self.platform_fee),
            "worker_amount": str(self.worker_amount),
        }


@dataclass(frozen=True)
class PayoutSummary:
    """Aggregate payout figures over a creation-time window."""

    start: datetime | None
    end: datetime | None
    by_status: dict[str, StatusTotals] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_payments(self) -> int:
        return sum(totals.count for totals in self.by_status.values())

    @property
    def total_platform_fees(self) -> Decimal:
        """Fees on every payment that was not cancelled."""
        return sum(
            (
                totals.platform_fee
                for status, totals in self.by_status.items()
                if status != PaymentStatus.CANCELLED
            ),
            Decimal("0.00"),
        )

    @property
    def total_paid_to_workers(self) -> Decimal:
        paid = self.by_status.get(PaymentStatus.PAID.value)
        return paid.worker_amount if paid else Decimal("0.00")

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "total_payments": self.total_payments,
            "total_platform_fees": str(self.total_platform_fees),
            "total_paid_to_workers": str(self.total_paid_to_workers),
            "by_status": {status: totals.to_dict() for status, totals in self.by_status.items()},
            "generated_at": self.generated_at.isoformat(),
        }


class PayoutAnalytics:
    """Payout summaries memoized in an injected TTL cache."""

    def __init__(self, session_factory: sessionmaker[Session], cache: TTLCache):
        self.session_factory = session_factory
        self.cache = cache

    def summary(self, start: datetime | None = None, end: datetime | None = None) -> PayoutSummary:
        """Summary of payments created in [start, end)."""
        start, end = _as_utc(start), _as_utc(end)
        if start is not None and end is not None and start >= end:
            raise ValidationError("start must be before end")
        return self.cache.get_or_compute(
            ("payout_summary", start, end),
            lambda: self._compute_summary(start, end),
        )

    def invalidate(self) -> None:
        """Forget cached summaries after payment data changed."""
        self.cache.invalidate()

    def _compute_summary(self, start: datetime | None, end: datetime | None) -> PayoutSummary:
        query = select(
            WorkerPayment.status,
            func.count(WorkerPayment.worker_payment_id),
            func.sum(WorkerPayment.amount),
            func.sum(WorkerPayment.platform_fee),
            func.sum(WorkerPayment.worker_amount),
        ).group_by(WorkerPayment.status)
        if start is not None:
            query = query.where(WorkerPayment.created_at >= start)
        if end is not None:
            query = query.where(WorkerPayment.created_at < end)

        with self.session_factory() as db:
            rows = db.execute(query).all()

        by_status = {status.value: StatusTotals() for status in PaymentStatus}
        for status, count, amount, platform_fee, worker_amount in rows:
            by_status[status] = StatusTotals(
                count=count,
                amount=_money(amount),
                platform_fee=_money(platform_fee),
                worker_amount=_money(worker_amount),
            )

        return PayoutSummary(start=start, end=end, by_status=by_status)
