"""Earnings Ledger - per-worker balances with an append-only history.

The ledger is the only code that changes earnings balances. Every mutation:
- checks balance sufficiency before touching any field
- updates the balance fields of the WorkerEarnings aggregate
- appends exactly one EarningsTransaction row

Methods work inside the caller's session and never commit, so a balance
change and the payment status change that caused it land in the same
database transaction.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from worker_payouts.errors import InsufficientBalanceError, ValidationError
from worker_payouts.models import EarningsTransaction, WorkerEarnings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class TransactionType(str, Enum):
    """Ledger transaction types."""

    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    HOLD = "HOLD"
    RELEASE = "RELEASE"


TRANSACTION_PREFIXES: dict[str, str] = {
    TransactionType.CREDIT: "EARN",
    TransactionType.DEBIT: "POUT",
    TransactionType.HOLD: "HOLD",
    TransactionType.RELEASE: "RLS",
}


def generate_transaction_id(transaction_type: str) -> str:
    """Build a sortable, collision-resistant ledger transaction id.

    Format: <PREFIX><epoch millis, 13 digits><12 hex chars of a uuid4>.
    """
    prefix = TRANSACTION_PREFIXES[TransactionType(transaction_type)]
    return f"{prefix}{int(time.time() * 1000):013d}{uuid4().hex[:12].upper()}"


def to_amount(value: Decimal | int | str | float) -> Decimal:
    """Normalize a money value to two decimal places."""
    try:
        amount = Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except ArithmeticError as e:
        raise ValidationError(f"Invalid amount: {value!r}") from e
    if amount < 0:
        raise ValidationError("Amount must not be negative")
    return amount


def _jsonable(value: Any) -> Any:
    """Convert metadata values to JSON-compatible types."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (Decimal, UUID, datetime)):
        return str(value)
    return value


@dataclass(frozen=True)
class EarningsBalance:
    """Point-in-time snapshot of a worker's balances."""

    total_earnings: Decimal
    available_balance: Decimal
    pending_balance: Decimal
    total_withdrawn: Decimal
    last_payout_date: datetime | None = None

    @classmethod
    def empty(cls) -> EarningsBalance:
        """Balance of a worker who has not earned anything yet."""
        zero = Decimal("0.00")
        return cls(zero, zero, zero, zero, None)

    @classmethod
    def of(cls, earnings: WorkerEarnings) -> EarningsBalance:
        """Snapshot an earnings row."""
        return cls(
            total_earnings=Decimal(str(earnings.total_earnings)),
            available_balance=Decimal(str(earnings.available_balance)),
            pending_balance=Decimal(str(earnings.pending_balance)),
            total_withdrawn=Decimal(str(earnings.total_withdrawn)),
            last_payout_date=earnings.last_payout_date,
        )

    @property
    def is_consistent(self) -> bool:
        """available + pending never exceeds what was earned; nothing negative."""
        return (
            min(
                self.total_earnings,
                self.available_balance,
                self.pending_balance,
                self.total_withdrawn,
            )
            >= 0
            and self.available_balance + self.pending_balance <= self.total_earnings
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            "total_earnings": self.total_earnings,
            "available_balance": self.available_balance,
            "pending_balance": self.pending_balance,
            "total_withdrawn": self.total_withdrawn,
            "last_payout_date": self.last_payout_date,
        }


@dataclass(frozen=True)
class LedgerPosting:
    """Result of a ledger mutation."""

    transaction_id: str
    transaction_type: str
    amount: Decimal
    worker_id: UUID
    balance: EarningsBalance


class EarningsLedger:
    """Service owning every change to worker earnings balances.

    Notes:
    - Callers load the aggregate with get_or_create()/get(lock=True) inside
      the transaction that will commit the mutation, so the sufficiency
      check and the write see the same row version.
    - A rejected operation leaves every balance unchanged and appends nothing.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, worker_id: UUID, *, lock: bool = False) -> WorkerEarnings | None:
        """Fetch the earnings aggregate of a worker, optionally row-locked."""
        stmt = select(WorkerEarnings).where(WorkerEarnings.worker_id == worker_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()

    def get_or_create(self, worker_id: UUID, *, lock: bool = True) -> WorkerEarnings:
        """Fetch (locked by default) or lazily create the earnings aggregate of a worker.

        The insert runs in a savepoint: when a concurrent first payment for
        the same worker wins the race, the unique constraint on worker_id
        rejects ours and the winner's row is loaded instead.
        """
        earnings = self.get(worker_id, lock=lock)
        if earnings is not None:
            return earnings

        earnings = WorkerEarnings(
            worker_id=worker_id,
            total_earnings=Decimal("0.00"),
            available_balance=Decimal("0.00"),
            pending_balance=Decimal("0.00"),
            total_withdrawn=Decimal("0.00"),
        )
        try:
            with self.db.begin_nested():
                self.db.add(earnings)
        except IntegrityError:
            logger.info("Earnings for worker %s created concurrently, reloading", worker_id)
            existing = self.get(worker_id, lock=True)
            if existing is None:
                raise
            return existing
        return earnings

    def balance(self, earnings: WorkerEarnings) -> EarningsBalance:
        """Snapshot current balances."""
        return EarningsBalance.of(earnings)

    def transactions(self, earnings: WorkerEarnings) -> list[EarningsTransaction]:
        """Ledger history in posting order."""
        return list(earnings.transactions)

    def add_earning(
        self,
        earnings: WorkerEarnings,
        amount: Decimal,
        description: str,
        reference_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerPosting:
        """Credit a worker: total and available both grow by amount."""
        amount = to_amount(amount)

        earnings.total_earnings = Decimal(str(earnings.total_earnings)) + amount
        earnings.available_balance = Decimal(str(earnings.available_balance)) + amount

        return self._append(
            earnings,
            TransactionType.CREDIT,
            amount,
            description,
            reference_id=reference_id,
            metadata=metadata,
        )

    def hold_amount(
        self,
        earnings: WorkerEarnings,
        amount: Decimal,
        description: str,
    ) -> LedgerPosting:
        """Move amount from available to pending."""
        amount = to_amount(amount)
        available = Decimal(str(earnings.available_balance))
        if available < amount:
            raise InsufficientBalanceError(
                "Insufficient available balance",
                required=amount,
                available=available,
            )

        earnings.available_balance = available - amount
        earnings.pending_balance = Decimal(str(earnings.pending_balance)) + amount

        return self._append(earnings, TransactionType.HOLD, amount, description)

    def release_hold(
        self,
        earnings: WorkerEarnings,
        amount: Decimal,
        description: str,
    ) -> LedgerPosting:
        """Move amount from pending back to available."""
        amount = to_amount(amount)
        pending = Decimal(str(earnings.pending_balance))
        if pending < amount:
            raise InsufficientBalanceError(
                "Insufficient pending balance",
                required=amount,
                available=pending,
            )

        earnings.pending_balance = pending - amount
        earnings.available_balance = Decimal(str(earnings.available_balance)) + amount

        return self._append(earnings, TransactionType.RELEASE, amount, description)

    def process_payout(
        self,
        earnings: WorkerEarnings,
        amount: Decimal,
        description: str,
        reference_id: UUID | None = None,
    ) -> LedgerPosting:
        """Debit available balance for money sent to the worker's bank."""
        amount = to_amount(amount)
        available = Decimal(str(earnings.available_balance))
        if available < amount:
            raise InsufficientBalanceError(
                "Insufficient available balance for payout",
                required=amount,
                available=available,
            )

        earnings.available_balance = available - amount
        earnings.total_withdrawn = Decimal(str(earnings.total_withdrawn)) + amount
        earnings.last_payout_date = datetime.now(timezone.utc)

        return self._append(
            earnings,
            TransactionType.DEBIT,
            amount,
            description,
            reference_id=reference_id,
        )

    def _append(
        self,
        earnings: WorkerEarnings,
        transaction_type: TransactionType,
        amount: Decimal,
        description: str,
        *,
        reference_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerPosting:
        """Append the audit record for a mutation already applied to earnings."""
        transaction_id = generate_transaction_id(transaction_type)
        earnings.transactions.append(
            EarningsTransaction(
                sequence=len(earnings.transactions) + 1,
                transaction_id=transaction_id,
                type=transaction_type.value,
                amount=amount,
                description=description,
                reference_id=reference_id,
                status="COMPLETED",
                metadata_json=_jsonable(metadata or {}),
            )
        )
        self.db.flush()

        return LedgerPosting(
            transaction_id=transaction_id,
            transaction_type=transaction_type.value,
            amount=amount,
            worker_id=earnings.worker_id,
            balance=EarningsBalance.of(earnings),
        )
