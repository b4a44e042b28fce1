"""Booking store - read-only view of upstream booking data."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from worker_payouts.models import Booking, Customer, Worker
from worker_payouts.providers.base import BankDetails


@dataclass(frozen=True)
class BookingSnapshot:
    """What the payout pipeline needs to know about a booking."""

    booking_id: UUID
    status: str
    price: Decimal
    payment_status: str
    payment_amount: Decimal | None
    worker_id: UUID
    worker_name: str
    worker_email: str | None
    worker_phone: str | None
    customer_id: UUID
    customer_name: str
    bank_details: BankDetails | None

    @property
    def is_payable(self) -> bool:
        """Booking finished and the customer's payment was captured."""
        return self.status == "COMPLETED" and self.payment_status == "COMPLETED"


class BookingStore(Protocol):
    """Narrow read interface onto the booking service."""

    def get_booking(self, booking_id: UUID) -> BookingSnapshot | None:
        """Return the booking with worker, customer and bank details joined."""
        ...


class SqlBookingStore:
    """Booking store reading the shared marketplace tables."""

    def __init__(self, db: Session):
        self.db = db

    def get_booking(self, booking_id: UUID) -> BookingSnapshot | None:
        row = self.db.execute(
            select(Booking, Worker, Customer)
            .join(Worker, Booking.worker_id == Worker.worker_id)
            .join(Customer, Booking.customer_id == Customer.customer_id)
            .where(Booking.booking_id == booking_id)
        ).first()

        if row is None:
            return None

        booking, worker, customer = row
        bank_details = None
        if worker.has_bank_details:
            bank_details = BankDetails(
                account_number=worker.bank_account_number or "",
                ifsc_code=worker.bank_ifsc_code or "",
                account_holder_name=worker.bank_account_holder_name,
                bank_name=worker.bank_name,
            )

        return BookingSnapshot(
            booking_id=booking.booking_id,
            status=booking.status,
            price=Decimal(str(booking.price)),
            payment_status=booking.payment_status,
            payment_amount=(
                Decimal(str(booking.payment_amount))
                if booking.payment_amount is not None
                else None
            ),
            worker_id=worker.worker_id,
            worker_name=worker.name,
            worker_email=worker.email,
            worker_phone=worker.phone,
            customer_id=customer.customer_id,
            customer_name=customer.name,
            bank_details=bank_details,
        )
