"""Tests for worker payment state machine."""

from decimal import Decimal

import pytest

from worker_payouts.models import WorkerPayment
from worker_payouts.services.state_machine import (
    InvalidTransitionError,
    PaymentStateMachine,
    PaymentStatus,
)


class TestPaymentStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        # PENDING → PROCESSING
        assert PaymentStateMachine.can_transition("PENDING", "PROCESSING") is True

        # PENDING → CANCELLED
        assert PaymentStateMachine.can_transition("PENDING", "CANCELLED") is True

        # PROCESSING → PAID / FAILED
        assert PaymentStateMachine.can_transition("PROCESSING", "PAID") is True
        assert PaymentStateMachine.can_transition("PROCESSING", "FAILED") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        # Can't skip PROCESSING
        assert PaymentStateMachine.can_transition("PENDING", "PAID") is False
        assert PaymentStateMachine.can_transition("PENDING", "FAILED") is False

        # No regressions
        assert PaymentStateMachine.can_transition("PROCESSING", "PENDING") is False
        assert PaymentStateMachine.can_transition("PAID", "PROCESSING") is False

        # PROCESSING can't be cancelled
        assert PaymentStateMachine.can_transition("PROCESSING", "CANCELLED") is False

    @pytest.mark.parametrize("status", ["PAID", "FAILED", "CANCELLED"])
    def test_terminal_statuses(self, status):
        """Terminal statuses allow nothing further."""
        assert PaymentStateMachine.is_terminal(status) is True
        assert PaymentStateMachine.get_next_statuses(status) == []
        for target in PaymentStatus:
            assert PaymentStateMachine.can_transition(status, target.value) is False

    def test_non_terminal_statuses(self):
        assert PaymentStateMachine.is_terminal("PENDING") is False
        assert PaymentStateMachine.is_terminal("PROCESSING") is False
        assert set(PaymentStateMachine.get_next_statuses("PENDING")) == {
            "PROCESSING",
            "CANCELLED",
        }

    def test_validate_transition_raises(self):
        """Test that validate_transition raises for invalid transitions."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            PaymentStateMachine.validate_transition("PAID", "PROCESSING")

        assert exc_info.value.from_status == "PAID"
        assert exc_info.value.to_status == "PROCESSING"

    def test_transition_updates_payment(self):
        """transition() validates and assigns the new status."""
        payment = WorkerPayment(
            amount=Decimal("100.00"),
            platform_fee=Decimal("15.00"),
            status="PENDING",
        )

        PaymentStateMachine.transition(payment, PaymentStatus.PROCESSING)
        assert payment.status == "PROCESSING"

        with pytest.raises(InvalidTransitionError):
            PaymentStateMachine.transition(payment, PaymentStatus.CANCELLED)
        assert payment.status == "PROCESSING"
