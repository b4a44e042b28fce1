"""Upstream marketplace records read by the payout pipeline.

Bookings, workers and customers are owned by the booking and profile
services. The payout core only reads them through the booking store.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from worker_payouts.models.base import Base, UpdatedAtMixin


class Worker(Base, UpdatedAtMixin):
    """Service worker with the bank profile used for payouts."""

    __tablename__ = "worker"

    worker_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_ifsc_code: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_holder_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String, nullable=True)

    @property
    def has_bank_details(self) -> bool:
        """Account number and IFSC are both required for a bank transfer."""
        return bool(self.bank_account_number and self.bank_ifsc_code)


class Customer(Base, UpdatedAtMixin):
    """Customer who booked and paid for a service."""

    __tablename__ = "customer"

    customer_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)


class Booking(Base, UpdatedAtMixin):
    """A booked service with its embedded customer payment state."""

    __tablename__ = "booking"

    booking_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    worker_id: Mapped[UUID] = mapped_column(
        ForeignKey("worker.worker_id", ondelete="RESTRICT"), nullable=False
    )
    customer_id: Mapped[UUID] = mapped_column(
        ForeignKey("customer.customer_id", ondelete="RESTRICT"), nullable=False
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    price: Mapped[Decimal] = mapped_column(nullable=False)
    booking_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payment_status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    payment_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    payment_transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'ACCEPTED', 'REJECTED', 'IN_PROGRESS', "
            "'PAYMENT_PENDING', 'COMPLETED', 'CANCELLED')",
            name="booking_status_check",
        ),
        CheckConstraint(
            "payment_status IN ('PENDING', 'COMPLETED', 'FAILED', 'REFUNDED')",
            name="booking_payment_status_check",
        ),
        CheckConstraint("price >= 0", name="booking_price_check"),
        Index("ix_booking_worker_status", "worker_id", "status"),
    )

    # Relationships
    worker: Mapped[Worker] = relationship()
    customer: Mapped[Customer] = relationship()
