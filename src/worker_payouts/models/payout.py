"""Worker payment and earnings ledger models.

Covers the payout sub-ledger:
- Worker payments (one per completed booking, fee split + bank snapshot)
- Worker earnings (one balance row per worker)
- Earnings transactions (append-only CREDIT/DEBIT/HOLD/RELEASE history)
- Fund accounts (provider-side recipients, created once and reused)
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from worker_payouts.models.base import Base, TimestampMixin, UpdatedAtMixin


class WorkerPayment(Base, UpdatedAtMixin):
    """Payout owed to a worker for one completed, customer-paid booking.

    The bank details are a snapshot taken at creation; later edits to the
    worker's bank profile do not affect an existing payment.
    """

    __tablename__ = "worker_payment"

    worker_payment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    worker_id: Mapped[UUID] = mapped_column(nullable=False)
    customer_id: Mapped[UUID] = mapped_column(nullable=False)
    booking_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    worker_amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    payment_method: Mapped[str] = mapped_column(
        String, nullable=False, default="BANK_TRANSFER"
    )

    # Bank snapshot
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_ifsc_code: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_holder_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String, nullable=True)

    transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    provider_payout_id: Mapped[str | None] = mapped_column(String, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("booking_id", name="worker_payment_booking_uq"),
        CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'PAID', 'FAILED', 'CANCELLED')",
            name="worker_payment_status_check",
        ),
        CheckConstraint(
            "payment_method IN ('BANK_TRANSFER', 'UPI', 'WALLET')",
            name="worker_payment_method_check",
        ),
        CheckConstraint(
            "amount >= 0 AND platform_fee >= 0 AND worker_amount >= 0",
            name="worker_payment_amounts_check",
        ),
        CheckConstraint(
            "abs(worker_amount - (amount - platform_fee)) < 0.005",
            name="worker_payment_split_check",
        ),
        Index("ix_worker_payment_worker", "worker_id"),
        Index("ix_worker_payment_status", "status"),
        Index("ix_worker_payment_created", "created_at"),
        Index("ix_worker_payment_paid", "paid_at"),
    )

    @validates("amount", "platform_fee")
    def _recompute_worker_amount(self, key: str, value: Any) -> Any:
        """Keep worker_amount equal to amount - platform_fee."""
        amount = value if key == "amount" else self.amount
        fee = value if key == "platform_fee" else self.platform_fee
        if amount is not None:
            self.worker_amount = Decimal(str(amount)) - Decimal(str(fee or 0))
        return value

    @property
    def payout_reference(self) -> str:
        """Reference sent to the provider; stable across retries of the same payment."""
        return f"WPOUT{self.worker_payment_id.hex}"


@event.listens_for(WorkerPayment, "before_insert")
@event.listens_for(WorkerPayment, "before_update")
def _enforce_worker_amount(mapper: Any, connection: Any, target: WorkerPayment) -> None:
    """Recompute the worker share right before the row is written."""
    if target.platform_fee is None:
        target.platform_fee = Decimal("0")
    target.worker_amount = Decimal(str(target.amount)) - Decimal(str(target.platform_fee))


class WorkerEarnings(Base, UpdatedAtMixin):
    """Running balances for one worker.

    available_balance + pending_balance never exceeds total_earnings;
    withdrawals leave total_earnings untouched.
    """

    __tablename__ = "worker_earnings"

    worker_earnings_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    worker_id: Mapped[UUID] = mapped_column(nullable=False)
    total_earnings: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    available_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    pending_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_withdrawn: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    last_payout_date: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("worker_id", name="worker_earnings_worker_uq"),
        CheckConstraint(
            "total_earnings >= 0 AND available_balance >= 0 "
            "AND pending_balance >= 0 AND total_withdrawn >= 0",
            name="worker_earnings_non_negative_check",
        ),
        Index("ix_worker_earnings_available", "available_balance"),
    )

    # Relationships
    transactions: Mapped[list[EarningsTransaction]] = relationship(
        back_populates="earnings",
        order_by="EarningsTransaction.sequence",
        lazy="selectin",
    )


class EarningsTransaction(Base, TimestampMixin):
    """Append-only record of one balance change."""

    __tablename__ = "earnings_transaction"

    earnings_transaction_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    worker_earnings_id: Mapped[UUID] = mapped_column(
        ForeignKey("worker_earnings.worker_earnings_id", ondelete="RESTRICT"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_id: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference_id: Mapped[UUID | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="COMPLETED")
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint(
            "worker_earnings_id", "transaction_id", name="earnings_transaction_id_uq"
        ),
        UniqueConstraint(
            "worker_earnings_id", "sequence", name="earnings_transaction_sequence_uq"
        ),
        CheckConstraint(
            "type IN ('CREDIT', 'DEBIT', 'HOLD', 'RELEASE')",
            name="earnings_transaction_type_check",
        ),
        CheckConstraint(
            "status IN ('PENDING', 'COMPLETED', 'FAILED')",
            name="earnings_transaction_status_check",
        ),
        CheckConstraint("amount >= 0", name="earnings_transaction_amount_check"),
        Index("ix_earnings_transaction_reference", "reference_id"),
    )

    # Relationships
    earnings: Mapped[WorkerEarnings] = relationship(back_populates="transactions")


class WorkerFundAccount(Base, TimestampMixin):
    """Provider contact + fund account registered for a worker bank account."""

    __tablename__ = "worker_fund_account"

    worker_fund_account_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    worker_id: Mapped[UUID] = mapped_column(nullable=False)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    bank_account_number: Mapped[str] = mapped_column(String, nullable=False)
    bank_ifsc_code: Mapped[str] = mapped_column(String, nullable=False)
    contact_id: Mapped[str] = mapped_column(String, nullable=False)
    fund_account_id: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "worker_id",
            "provider",
            "bank_account_number",
            "bank_ifsc_code",
            name="worker_fund_account_bank_uq",
        ),
    )
