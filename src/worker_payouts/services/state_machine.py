"""Worker payment state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from worker_payouts.models import WorkerPayment


class PaymentStatus(str, Enum):
    """Worker payment status values."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PaymentStateMachine:
    """State machine for worker payment status transitions.

    Allowed transitions:
    - PENDING → PROCESSING
    - PENDING → CANCELLED
    - PROCESSING → PAID
    - PROCESSING → FAILED

    Statuses only move forward; PAID, FAILED and CANCELLED are terminal.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PaymentStatus.PENDING: [PaymentStatus.PROCESSING, PaymentStatus.CANCELLED],
        PaymentStatus.PROCESSING: [PaymentStatus.PAID, PaymentStatus.FAILED],
        PaymentStatus.PAID: [],
        PaymentStatus.FAILED: [],
        PaymentStatus.CANCELLED: [],
    }

    TERMINAL = {
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        """Check if no further transitions are possible."""
        return status in cls.TERMINAL

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def transition(cls, payment: WorkerPayment, to_status: str) -> None:
        """Move a payment to a new status after validating the transition."""
        cls.validate_transition(payment.status, to_status)
        payment.status = PaymentStatus(to_status).value
