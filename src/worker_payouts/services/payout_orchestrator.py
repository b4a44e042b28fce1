"""Payout Orchestrator - completed bookings to worker bank payouts.

Orchestrates worker payouts through:
1. Payment creation from a completed, paid booking (fee split + CREDIT)
2. PENDING → PROCESSING, committed before the provider is contacted
3. Provider payout with fund account reuse
4. PAID + DEBIT (one transaction) or FAILED with a reason

A crash between steps 2 and 4 leaves the payment in PROCESSING; the
reconciliation service resolves those from provider state.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Protocol
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from worker_payouts.config import PayoutConfig
from worker_payouts.database import session_scope
from worker_payouts.errors import (
    DuplicateError,
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    PayoutError,
    ProviderError,
    ValidationError,
)
from worker_payouts.events import (
    DomainEvent,
    EventEmitter,
    EventMetadata,
    PayoutFailed,
    PayoutPaid,
    PayoutProcessingStarted,
    WorkerPaymentCreated,
)
from worker_payouts.events.types import LEDGER_EVENTS
from worker_payouts.models import Worker, WorkerFundAccount, WorkerPayment
from worker_payouts.providers.base import (
    BankDetails,
    PayoutProvider,
    PayoutRequest,
    to_minor_units,
)
from worker_payouts.services.booking_store import BookingStore, SqlBookingStore
from worker_payouts.services.earnings_ledger import (
    CENT,
    EarningsBalance,
    EarningsLedger,
    LedgerPosting,
    to_amount,
)
from worker_payouts.services.state_machine import PaymentStateMachine, PaymentStatus

logger = logging.getLogger(__name__)

INSUFFICIENT_BALANCE_REASON = "Insufficient worker balance for payout"


class PayoutTaskQueue(Protocol):
    """Deferred processing of newly created payments."""

    def submit(self, payment_id: UUID, delay_seconds: float = 0.0) -> None:
        """Schedule processing of a payment."""
        ...


@dataclass(frozen=True)
class PaymentCreated:
    """Result of worker payment creation."""

    payment_id: UUID
    booking_id: UUID
    worker_id: UUID
    amount: Decimal
    platform_fee: Decimal
    worker_amount: Decimal
    status: str


@dataclass(frozen=True)
class PayoutResult:
    """Outcome of processing a payment.

    A FAILED status is a normal outcome: the processing ran, the payout
    did not go through.
    """

    payment_id: UUID
    status: str
    worker_amount: Decimal
    provider_payout_id: str | None = None
    transaction_id: str | None = None
    paid_at: datetime | None = None
    failure_reason: str | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the worker got paid."""
        return self.status == PaymentStatus.PAID


@dataclass
class BatchResult:
    """Result of processing all pending payments."""

    processed: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class WebhookOutcome:
    """What the customer-payment webhook did."""

    booking_id: str
    action: str  # ignored/created/rejected
    message: str
    payment_id: UUID | None = None


@dataclass(frozen=True)
class WorkerPaymentsPage:
    """One page of a worker's payment history with the current balances."""

    payments: list[WorkerPayment]
    earnings: EarningsBalance
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        """Number of pages at this page size."""
        return math.ceil(self.total / self.limit) if self.limit else 0


def compute_fee_split(amount: Decimal, fee_percentage: Decimal) -> tuple[Decimal, Decimal]:
    """Split a booking price into (platform_fee, worker_amount).

    The fee is rounded half-up to the cent; the worker gets the remainder so
    both parts always sum to the price.
    """
    amount = Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)
    platform_fee = (amount * Decimal(str(fee_percentage)) / Decimal("100")).quantize(
        CENT, rounding=ROUND_HALF_UP
    )
    return platform_fee, amount - platform_fee


def parse_id(value: str | UUID, label: str) -> UUID:
    """Parse an identifier, rejecting malformed input."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {label} ID: {value!r}") from e


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FundAccountResolver:
    """Find or register the provider fund account for a worker bank account."""

    def __init__(self, db: Session, provider: PayoutProvider):
        self.db = db
        self.provider = provider

    def resolve(
        self,
        *,
        worker_id: UUID,
        bank_details: BankDetails,
        name: str,
        email: str | None,
        phone: str | None,
    ) -> str:
        """Return a fund account id, creating contact + fund account only once."""
        existing = self.db.execute(
            select(WorkerFundAccount).where(
                WorkerFundAccount.worker_id == worker_id,
                WorkerFundAccount.provider == self.provider.provider_name,
                WorkerFundAccount.bank_account_number == bank_details.account_number,
                WorkerFundAccount.bank_ifsc_code == bank_details.ifsc_code,
            )
        ).scalars().first()
        if existing is not None:
            return existing.fund_account_id

        contact_id = self.provider.create_contact(name, email, phone)
        fund_account_id = self.provider.create_fund_account(contact_id, bank_details)

        self.db.add(
            WorkerFundAccount(
                worker_id=worker_id,
                provider=self.provider.provider_name,
                bank_account_number=bank_details.account_number,
                bank_ifsc_code=bank_details.ifsc_code,
                contact_id=contact_id,
                fund_account_id=fund_account_id,
            )
        )
        self.db.flush()
        logger.info(
            "Registered fund account %s for worker %s (%s)",
            fund_account_id,
            worker_id,
            bank_details.masked_account_number,
        )
        return fund_account_id


class PayoutOrchestrator:
    """Worker payout orchestration service.

    Coordinates the worker payment lifecycle:
    - Create payments from completed bookings
    - Submit payouts to the provider
    - Keep payment status and earnings ledger consistent
    - Publish domain events after each commit
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        provider: PayoutProvider,
        config: PayoutConfig,
        *,
        booking_store_factory: Callable[[Session], BookingStore] = SqlBookingStore,
        emitter: EventEmitter | None = None,
        task_queue: PayoutTaskQueue | None = None,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.config = config
        self.booking_store_factory = booking_store_factory
        self.emitter = emitter
        self.task_queue = task_queue

    # =========================================================================
    # Creation
    # =========================================================================

    def create_payment(self, booking_id: str | UUID, *, actor_type: str = "api") -> PaymentCreated:
        """Create the worker payment for a completed, paid booking.

        The payment row and the earnings CREDIT commit together or not at all.

        Raises:
            ValidationError: malformed booking id or missing bank details
            NotFoundError: booking missing, not completed, or not paid
            DuplicateError: a payment already exists for the booking
        """
        booking_uuid = parse_id(booking_id, "booking")
        metadata = EventMetadata.create(actor_type=actor_type)

        try:
            with session_scope(self.session_factory) as db:
                booking = self.booking_store_factory(db).get_booking(booking_uuid)
                if booking is None or not booking.is_payable:
                    raise NotFoundError("Completed booking with payment not found")

                if self._payment_exists(db, booking_uuid):
                    raise DuplicateError("Worker payment already exists for this booking")

                bank = booking.bank_details
                if bank is None:
                    raise ValidationError("Worker bank details not found")

                platform_fee, worker_amount = compute_fee_split(
                    booking.price, self.config.platform_fee_percentage
                )

                payment = WorkerPayment(
                    worker_id=booking.worker_id,
                    customer_id=booking.customer_id,
                    booking_id=booking_uuid,
                    amount=booking.price,
                    platform_fee=platform_fee,
                    status=PaymentStatus.PENDING.value,
                    payment_method="BANK_TRANSFER",
                    bank_account_number=bank.account_number,
                    bank_ifsc_code=bank.ifsc_code,
                    bank_account_holder_name=bank.account_holder_name,
                    bank_name=bank.bank_name,
                )
                db.add(payment)
                db.flush()

                ledger = EarningsLedger(db)
                earnings = ledger.get_or_create(booking.worker_id)
                posting = ledger.add_earning(
                    earnings,
                    payment.worker_amount,
                    f"Payment for booking {booking_uuid}",
                    reference_id=payment.worker_payment_id,
                    metadata={
                        "booking_id": booking_uuid,
                        "customer_name": booking.customer_name,
                        "service_amount": booking.price,
                        "platform_fee": platform_fee,
                    },
                )

                created = PaymentCreated(
                    payment_id=payment.worker_payment_id,
                    booking_id=booking_uuid,
                    worker_id=booking.worker_id,
                    amount=Decimal(str(payment.amount)),
                    platform_fee=Decimal(str(payment.platform_fee)),
                    worker_amount=Decimal(str(payment.worker_amount)),
                    status=payment.status,
                )
        except IntegrityError:
            # A concurrent request inserted the same booking first
            with self.session_factory() as db:
                if self._payment_exists(db, booking_uuid):
                    raise DuplicateError(
                        "Worker payment already exists for this booking"
                    ) from None
            raise

        logger.info(
            "Created worker payment %s for booking %s: amount=%s fee=%s worker=%s",
            created.payment_id,
            booking_uuid,
            created.amount,
            created.platform_fee,
            created.worker_amount,
        )
        self._emit(
            [
                WorkerPaymentCreated(
                    metadata=metadata,
                    payment_id=created.payment_id,
                    booking_id=booking_uuid,
                    worker_id=created.worker_id,
                    amount=created.amount,
                    platform_fee=created.platform_fee,
                    worker_amount=created.worker_amount,
                ),
                self._ledger_event(posting, metadata),
            ]
        )

        if self.task_queue is not None:
            self.task_queue.submit(created.payment_id, self.config.auto_process_delay_seconds)

        return created

    # =========================================================================
    # Processing
    # =========================================================================

    def process_payment(self, payment_id: str | UUID, *, actor_type: str = "api") -> PayoutResult:
        """Drive a PENDING payment to PAID or FAILED.

        Raises:
            ValidationError: malformed payment id
            NotFoundError: payment does not exist
            InvalidStateError: payment is not PENDING
            InsufficientBalanceError: available balance does not cover the
                payout (the payment is recorded as FAILED first)
        """
        payment_uuid = parse_id(payment_id, "payment")
        metadata = EventMetadata.create(actor_type=actor_type)

        # Phase 1: claim the payment
        with session_scope(self.session_factory) as db:
            payment = self._load_payment(db, payment_uuid, lock=True)
            if payment.status != PaymentStatus.PENDING:
                raise InvalidStateError(payment.status)
            PaymentStateMachine.transition(payment, PaymentStatus.PROCESSING)
            payment.processed_at = _now()
            started = PayoutProcessingStarted(
                metadata=metadata,
                payment_id=payment.worker_payment_id,
                worker_id=payment.worker_id,
                worker_amount=Decimal(str(payment.worker_amount)),
            )
        self._emit([started])

        # Phase 2: balance check, provider call, terminal state + ledger
        events: list[DomainEvent] = []
        shortfall: InsufficientBalanceError | None = None
        with session_scope(self.session_factory) as db:
            payment = self._load_payment(db, payment_uuid, lock=True)
            if payment.status != PaymentStatus.PROCESSING:
                raise InvalidStateError(payment.status)

            worker_amount = Decimal(str(payment.worker_amount))
            ledger = EarningsLedger(db)
            earnings = ledger.get(payment.worker_id, lock=True)
            available = (
                Decimal(str(earnings.available_balance)) if earnings else Decimal("0.00")
            )

            if earnings is None or available < worker_amount:
                self._mark_failed(payment, INSUFFICIENT_BALANCE_REASON)
                shortfall = InsufficientBalanceError(
                    INSUFFICIENT_BALANCE_REASON,
                    required=worker_amount,
                    available=available,
                )
                events.append(self._failed_event(payment, metadata))
            else:
                try:
                    fund_account_id = self._resolve_fund_account(db, payment)
                    response = self.provider.create_payout(
                        self._payout_request(payment, fund_account_id)
                    )
                except ProviderError as e:
                    logger.warning("Payout for payment %s failed: %s", payment_uuid, e.description)
                    self._mark_failed(payment, e.description)
                    events.append(self._failed_event(payment, metadata))
                else:
                    PaymentStateMachine.transition(payment, PaymentStatus.PAID)
                    payment.provider_payout_id = response.payout_id
                    payment.transaction_id = f"TXN{int(time.time() * 1000)}"
                    payment.paid_at = _now()
                    posting = ledger.process_payout(
                        earnings,
                        worker_amount,
                        f"Payout for booking {payment.booking_id}",
                        reference_id=payment.worker_payment_id,
                    )
                    events.append(
                        PayoutPaid(
                            metadata=metadata,
                            payment_id=payment.worker_payment_id,
                            worker_id=payment.worker_id,
                            worker_amount=worker_amount,
                            provider_payout_id=response.payout_id,
                            transaction_id=payment.transaction_id,
                        )
                    )
                    events.append(self._ledger_event(posting, metadata))
                    logger.info(
                        "Worker payment %s paid: payout %s", payment_uuid, response.payout_id
                    )

            result = self._payout_result(payment)

        self._emit(events)
        if shortfall is not None:
            raise shortfall
        return result

    def process_if_pending(self, payment_id: UUID) -> PayoutResult | None:
        """Queue consumer entry point: process only payments still PENDING.

        Safe under at-least-once delivery; a payment already claimed by
        another caller is skipped.
        """
        with self.session_factory() as db:
            payment = db.get(WorkerPayment, payment_id)
            if payment is None or payment.status != PaymentStatus.PENDING:
                logger.info("Skipping payment %s: no longer pending", payment_id)
                return None
        try:
            return self.process_payment(payment_id, actor_type="queue")
        except InvalidStateError as e:
            logger.info("Skipping payment %s: %s", payment_id, e.message)
            return None

    def process_pending_payments(self, *, actor_type: str = "api") -> BatchResult:
        """Process every PENDING payment sequentially, oldest first.

        Individual failures are collected; they never abort the batch.
        """
        with self.session_factory() as db:
            pending_ids = list(
                db.execute(
                    select(WorkerPayment.worker_payment_id)
                    .where(WorkerPayment.status == PaymentStatus.PENDING.value)
                    .order_by(WorkerPayment.created_at, WorkerPayment.worker_payment_id)
                ).scalars()
            )

        logger.info("Processing %d pending worker payments", len(pending_ids))
        result = BatchResult()

        for payment_id in pending_ids:
            result.processed += 1
            try:
                outcome = self.process_payment(payment_id, actor_type=actor_type)
            except Exception as e:
                logger.exception("Failed to process payment %s", payment_id)
                result.failed += 1
                result.errors.append({"payment_id": payment_id, "error": str(e)})
                continue

            if outcome.succeeded:
                result.successful += 1
            else:
                result.failed += 1
                result.errors.append(
                    {"payment_id": payment_id, "error": outcome.failure_reason}
                )

        return result

    # =========================================================================
    # Webhook
    # =========================================================================

    def handle_customer_payment_webhook(
        self,
        booking_id: str,
        payment_status: str,
        transaction_id: str | None = None,
    ) -> WebhookOutcome:
        """React to a customer payment notification.

        Only COMPLETED payments create a worker payment. Request-level
        failures are logged and reported in the outcome so the sender gets
        an acknowledgement either way.
        """
        logger.info(
            "Customer payment webhook received for booking %s: %s (transaction %s)",
            booking_id,
            payment_status,
            transaction_id,
        )

        if payment_status != "COMPLETED":
            return WebhookOutcome(
                booking_id=booking_id,
                action="ignored",
                message="Customer payment not completed, skipping worker payment",
            )

        try:
            created = self.create_payment(booking_id, actor_type="webhook")
        except PayoutError as e:
            logger.warning(
                "Failed to create worker payment for booking %s: %s", booking_id, e.message
            )
            return WebhookOutcome(booking_id=booking_id, action="rejected", message=e.message)

        return WebhookOutcome(
            booking_id=booking_id,
            action="created",
            message="Worker payment processing initiated",
            payment_id=created.payment_id,
        )

    # =========================================================================
    # Earnings holds
    # =========================================================================

    def hold_earnings(
        self,
        worker_id: str | UUID,
        amount: Decimal | str,
        description: str,
        *,
        actor_type: str = "api",
    ) -> EarningsBalance:
        """Move part of a worker's available balance to pending, e.g. during a dispute.

        Held funds cannot be paid out until released.

        Raises:
            ValidationError: malformed worker id or amount
            NotFoundError: the worker has no earnings yet
            InsufficientBalanceError: available balance is below amount
        """
        return self._adjust_hold(worker_id, amount, description, hold=True, actor_type=actor_type)

    def release_earnings(
        self,
        worker_id: str | UUID,
        amount: Decimal | str,
        description: str,
        *,
        actor_type: str = "api",
    ) -> EarningsBalance:
        """Return held funds to the worker's available balance."""
        return self._adjust_hold(worker_id, amount, description, hold=False, actor_type=actor_type)

    def _adjust_hold(
        self,
        worker_id: str | UUID,
        amount: Decimal | str,
        description: str,
        *,
        hold: bool,
        actor_type: str,
    ) -> EarningsBalance:
        worker_uuid = parse_id(worker_id, "worker")
        metadata = EventMetadata.create(actor_type=actor_type)

        with session_scope(self.session_factory) as db:
            ledger = EarningsLedger(db)
            earnings = ledger.get(worker_uuid, lock=True)
            if earnings is None:
                raise NotFoundError("Worker earnings not found")
            if hold:
                posting = ledger.hold_amount(earnings, to_amount(amount), description)
            else:
                posting = ledger.release_hold(earnings, to_amount(amount), description)

        logger.info(
            "%s %s for worker %s: available=%s pending=%s",
            posting.transaction_type,
            posting.amount,
            worker_uuid,
            posting.balance.available_balance,
            posting.balance.pending_balance,
        )
        self._emit([self._ledger_event(posting, metadata)])
        return posting.balance

    # =========================================================================
    # Queries
    # =========================================================================

    def get_worker_payments(
        self,
        worker_id: str | UUID,
        page: int = 1,
        limit: int = 10,
        status: str | None = None,
    ) -> WorkerPaymentsPage:
        """Newest-first payment history of a worker with an earnings snapshot."""
        worker_uuid = parse_id(worker_id, "worker")
        if page < 1:
            raise ValidationError("page must be at least 1")
        if not 1 <= limit <= 100:
            raise ValidationError("limit must be between 1 and 100")
        if status is not None and status not in {s.value for s in PaymentStatus}:
            raise ValidationError(f"Unknown payment status: {status}")

        with self.session_factory() as db:
            query = select(WorkerPayment).where(WorkerPayment.worker_id == worker_uuid)
            if status:
                query = query.where(WorkerPayment.status == status)

            total = db.scalar(select(func.count()).select_from(query.subquery())) or 0

            query = query.order_by(WorkerPayment.created_at.desc())
            query = query.offset((page - 1) * limit).limit(limit)
            payments = list(db.execute(query).scalars())

            earnings = EarningsLedger(db).get(worker_uuid)
            balance = EarningsBalance.of(earnings) if earnings else EarningsBalance.empty()

        return WorkerPaymentsPage(
            payments=payments,
            earnings=balance,
            page=page,
            limit=limit,
            total=total,
        )

    def get_payment_by_id(self, payment_id: str | UUID) -> WorkerPayment:
        """Fetch one payment."""
        payment_uuid = parse_id(payment_id, "payment")
        with self.session_factory() as db:
            payment = db.get(WorkerPayment, payment_uuid)
            if payment is None:
                raise NotFoundError("Payment not found")
            return payment

    # =========================================================================
    # Internals
    # =========================================================================

    def _payment_exists(self, db: Session, booking_id: UUID) -> bool:
        return (
            db.execute(
                select(WorkerPayment.worker_payment_id).where(
                    WorkerPayment.booking_id == booking_id
                )
            ).first()
            is not None
        )

    def _load_payment(self, db: Session, payment_id: UUID, *, lock: bool) -> WorkerPayment:
        stmt = select(WorkerPayment).where(WorkerPayment.worker_payment_id == payment_id)
        if lock:
            stmt = stmt.with_for_update()
        payment = db.execute(stmt).scalars().first()
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment

    def _resolve_fund_account(self, db: Session, payment: WorkerPayment) -> str:
        worker = db.get(Worker, payment.worker_id)
        bank = BankDetails(
            account_number=payment.bank_account_number or "",
            ifsc_code=payment.bank_ifsc_code or "",
            account_holder_name=payment.bank_account_holder_name,
            bank_name=payment.bank_name,
        )
        return FundAccountResolver(db, self.provider).resolve(
            worker_id=payment.worker_id,
            bank_details=bank,
            name=worker.name if worker else (payment.bank_account_holder_name or ""),
            email=worker.email if worker else None,
            phone=worker.phone if worker else None,
        )

    def _payout_request(self, payment: WorkerPayment, fund_account_id: str) -> PayoutRequest:
        return PayoutRequest(
            source_account=self.config.source_account_number,
            fund_account_id=fund_account_id,
            amount_minor=to_minor_units(payment.worker_amount),
            currency=self.config.currency,
            mode=self.config.payout_mode,
            reference_id=payment.payout_reference,
            narration=f"{self.config.platform_name} Payment - {payment.booking_id}",
            notes={
                "payment_id": str(payment.worker_payment_id),
                "booking_id": str(payment.booking_id),
            },
        )

    def _mark_failed(self, payment: WorkerPayment, reason: str) -> None:
        PaymentStateMachine.transition(payment, PaymentStatus.FAILED)
        payment.failure_reason = reason

    def _failed_event(self, payment: WorkerPayment, metadata: EventMetadata) -> PayoutFailed:
        return PayoutFailed(
            metadata=metadata,
            payment_id=payment.worker_payment_id,
            worker_id=payment.worker_id,
            worker_amount=Decimal(str(payment.worker_amount)),
            failure_reason=payment.failure_reason or "",
        )

    def _ledger_event(self, posting: LedgerPosting, metadata: EventMetadata) -> DomainEvent:
        event_class = LEDGER_EVENTS[posting.transaction_type]
        return event_class(
            metadata=metadata,
            worker_id=posting.worker_id,
            transaction_id=posting.transaction_id,
            amount=posting.amount,
            available_balance=posting.balance.available_balance,
            pending_balance=posting.balance.pending_balance,
        )

    def _payout_result(self, payment: WorkerPayment) -> PayoutResult:
        return PayoutResult(
            payment_id=payment.worker_payment_id,
            status=payment.status,
            worker_amount=Decimal(str(payment.worker_amount)),
            provider_payout_id=payment.provider_payout_id,
            transaction_id=payment.transaction_id,
            paid_at=payment.paid_at,
            failure_reason=payment.failure_reason,
        )

    def _emit(self, events: list[DomainEvent]) -> None:
        if self.emitter is not None:
            self.emitter.emit_all(events)
