"""Stuck payment reconciliation.

Processing commits PROCESSING before the provider is called and the terminal
state afterwards. A crash in between leaves a payment PROCESSING with no
record of what the provider did; this job asks the provider, by payout
reference, and finishes the payment accordingly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, sessionmaker

from worker_payouts.config import PayoutConfig
from worker_payouts.database import session_scope
from worker_payouts.errors import InsufficientBalanceError, ProviderError, ValidationError
from worker_payouts.events import (
    DomainEvent,
    EarningsDebited,
    EventEmitter,
    EventMetadata,
    PayoutFailed,
    PayoutPaid,
    StuckPaymentReconciled,
)
from worker_payouts.models import WorkerPayment
from worker_payouts.providers.base import PayoutProvider, PayoutStatusResult
from worker_payouts.services.earnings_ledger import EarningsLedger
from worker_payouts.services.state_machine import PaymentStateMachine, PaymentStatus

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """Result of a reconciliation run."""

    checked: int = 0
    paid: int = 0
    failed: int = 0
    still_processing: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether every stuck payment could be examined."""
        return not self.errors


class ReconciliationService:
    """Resolves PROCESSING payments from provider-side payout state."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        provider: PayoutProvider,
        config: PayoutConfig,
        *,
        emitter: EventEmitter | None = None,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.config = config
        self.emitter = emitter

    def get_stuck_payment_ids(
        self,
        older_than_minutes: int | None = None,
        *,
        now: datetime | None = None,
    ) -> list[UUID]:
        """PROCESSING payments whose processing started before the cutoff."""
        if older_than_minutes is None:
            minutes = self.config.reconcile_after_minutes
        elif older_than_minutes < 1:
            raise ValidationError("older_than_minutes must be at least 1")
        else:
            minutes = older_than_minutes
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=minutes)

        with self.session_factory() as db:
            return list(
                db.execute(
                    select(WorkerPayment.worker_payment_id)
                    .where(
                        WorkerPayment.status == PaymentStatus.PROCESSING.value,
                        or_(
                            WorkerPayment.processed_at.is_(None),
                            WorkerPayment.processed_at < cutoff,
                        ),
                    )
                    .order_by(WorkerPayment.processed_at)
                ).scalars()
            )

    def reconcile_stuck_payments(
        self,
        older_than_minutes: int | None = None,
        *,
        now: datetime | None = None,
    ) -> ReconciliationResult:
        """Resolve every stuck payment, each in its own transaction."""
        result = ReconciliationResult()

        for payment_id in self.get_stuck_payment_ids(older_than_minutes, now=now):
            result.checked += 1
            try:
                resolved = self._reconcile_one(payment_id)
            except (ProviderError, InsufficientBalanceError) as e:
                logger.error("Could not reconcile payment %s: %s", payment_id, e.message)
                result.errors.append(
                    {"payment_id": payment_id, "code": e.code, "message": e.message}
                )
                continue
            except Exception as e:
                logger.exception("Unexpected error reconciling payment %s", payment_id)
                result.errors.append(
                    {"payment_id": payment_id, "code": "INTERNAL_ERROR", "message": str(e)}
                )
                continue

            if resolved is None:
                continue
            if resolved == PaymentStatus.PAID:
                result.paid += 1
            elif resolved == PaymentStatus.FAILED:
                result.failed += 1
            else:
                result.still_processing += 1

        logger.info(
            "Reconciliation checked %d payments: %d paid, %d failed, %d in flight, %d errors",
            result.checked,
            result.paid,
            result.failed,
            result.still_processing,
            len(result.errors),
        )
        return result

    def _reconcile_one(self, payment_id: UUID) -> str | None:
        """Resolve a single payment; returns its status afterwards."""
        metadata = EventMetadata.create(actor_type="system")
        events: list[DomainEvent] = []

        with session_scope(self.session_factory) as db:
            payment = db.execute(
                select(WorkerPayment)
                .where(WorkerPayment.worker_payment_id == payment_id)
                .with_for_update()
            ).scalars().first()
            if payment is None or payment.status != PaymentStatus.PROCESSING:
                # Finished by someone else since the listing
                return payment.status if payment else None

            remote = self.provider.get_payout_status(payment.payout_reference)

            if remote is None or remote.is_failed:
                reason = self._failure_reason(remote)
                PaymentStateMachine.transition(payment, PaymentStatus.FAILED)
                payment.failure_reason = reason
                events.append(
                    PayoutFailed(
                        metadata=metadata,
                        payment_id=payment.worker_payment_id,
                        worker_id=payment.worker_id,
                        worker_amount=Decimal(str(payment.worker_amount)),
                        failure_reason=reason,
                    )
                )
            elif remote.is_settled:
                self._mark_paid(db, payment, remote, metadata, events)
            else:
                logger.info(
                    "Payment %s still %s at provider", payment_id, remote.status
                )
                return payment.status

            events.append(
                StuckPaymentReconciled(
                    metadata=metadata,
                    payment_id=payment.worker_payment_id,
                    resolved_status=payment.status,
                    provider_status=remote.status if remote else None,
                )
            )
            status = payment.status

        if self.emitter is not None:
            self.emitter.emit_all(events)
        return status

    def _mark_paid(
        self,
        db: Session,
        payment: WorkerPayment,
        remote: PayoutStatusResult,
        metadata: EventMetadata,
        events: list[DomainEvent],
    ) -> None:
        worker_amount = Decimal(str(payment.worker_amount))
        ledger = EarningsLedger(db)
        earnings = ledger.get(payment.worker_id, lock=True)
        if earnings is None:
            raise InsufficientBalanceError(
                "Worker has no earnings to debit",
                required=worker_amount,
                available=Decimal("0.00"),
            )

        # Raises before any write when the balance no longer covers the payout
        posting = ledger.process_payout(
            earnings,
            worker_amount,
            f"Payout for booking {payment.booking_id}",
            reference_id=payment.worker_payment_id,
        )

        now = datetime.now(timezone.utc)
        PaymentStateMachine.transition(payment, PaymentStatus.PAID)
        payment.provider_payout_id = remote.payout_id
        payment.transaction_id = f"TXN{int(now.timestamp() * 1000)}"
        payment.paid_at = now

        events.append(
            PayoutPaid(
                metadata=metadata,
                payment_id=payment.worker_payment_id,
                worker_id=payment.worker_id,
                worker_amount=worker_amount,
                provider_payout_id=remote.payout_id,
                transaction_id=payment.transaction_id,
            )
        )
        events.append(
            EarningsDebited(
                metadata=metadata,
                worker_id=posting.worker_id,
                transaction_id=posting.transaction_id,
                amount=posting.amount,
                available_balance=posting.balance.available_balance,
                pending_balance=posting.balance.pending_balance,
            )
        )

    @staticmethod
    def _failure_reason(remote: PayoutStatusResult | None) -> str:
        if remote is None:
            return "Payout not found at provider"
        return remote.failure_reason or f"Payout {remote.status} at provider"
