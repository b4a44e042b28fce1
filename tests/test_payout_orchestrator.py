"""Tests for PayoutOrchestrator - completed bookings to worker payouts.

Tests verify:
1. Payment creation with platform fee split and earnings credit
2. Processing to PAID with ledger debit, or FAILED with a reason
3. Status never moves backwards and nothing is paid twice
4. Batch processing, webhook handling and read-only queries
"""

import re
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from worker_payouts.errors import (
    DuplicateError,
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from worker_payouts.models import (
    EarningsTransaction,
    Worker,
    WorkerEarnings,
    WorkerFundAccount,
    WorkerPayment,
)
from worker_payouts.services.earnings_ledger import EarningsBalance, EarningsLedger
from worker_payouts.services.payout_orchestrator import (
    INSUFFICIENT_BALANCE_REASON,
    PayoutOrchestrator,
    compute_fee_split,
)


def _balance(session_factory, worker_id) -> EarningsBalance:
    with session_factory() as db:
        earnings = EarningsLedger(db).get(worker_id)
        return EarningsBalance.of(earnings) if earnings else EarningsBalance.empty()


def _transaction_types(session_factory, worker_id) -> list[str]:
    with session_factory() as db:
        earnings = EarningsLedger(db).get(worker_id)
        return [t.type for t in earnings.transactions] if earnings else []


def _event_names(events) -> list[str]:
    return [event.event_type for event in events]


class TestFeeSplit:
    """Platform fee computation."""

    def test_default_fifteen_percent(self):
        assert compute_fee_split(Decimal("1000.00"), Decimal("15")) == (
            Decimal("150.00"),
            Decimal("850.00"),
        )

    def test_fee_rounds_half_up(self):
        # 999.99 * 15% = 149.9985
        assert compute_fee_split(Decimal("999.99"), Decimal("15")) == (
            Decimal("150.00"),
            Decimal("849.99"),
        )
        # 0.10 * 15% = 0.015
        assert compute_fee_split(Decimal("0.10"), Decimal("15")) == (
            Decimal("0.02"),
            Decimal("0.08"),
        )

    def test_zero_and_full_fee(self):
        assert compute_fee_split(Decimal("500.00"), Decimal("0")) == (
            Decimal("0.00"),
            Decimal("500.00"),
        )
        assert compute_fee_split(Decimal("500.00"), Decimal("100")) == (
            Decimal("500.00"),
            Decimal("0.00"),
        )


class TestCreatePayment:
    """Worker payment creation."""

    def test_create_splits_fee_and_credits_worker(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory, task_queue, events
    ):
        """1000.00 booking: fee 150.00, worker 850.00, CREDIT of 850.00."""
        worker_id = test_data.create_worker()
        booking_id = test_data.create_booking(price="1000.00", worker_id=worker_id)

        created = orchestrator.create_payment(str(booking_id))

        assert created.booking_id == booking_id
        assert created.worker_id == worker_id
        assert created.amount == Decimal("1000.00")
        assert created.platform_fee == Decimal("150.00")
        assert created.worker_amount == Decimal("850.00")
        assert created.status == "PENDING"

        balance = _balance(session_factory, worker_id)
        assert balance.total_earnings == Decimal("850.00")
        assert balance.available_balance == Decimal("850.00")
        assert _transaction_types(session_factory, worker_id) == ["CREDIT"]

        with session_factory() as db:
            txn = db.execute(select(EarningsTransaction)).scalars().one()
            assert txn.reference_id == created.payment_id
            assert txn.description == f"Payment for booking {booking_id}"
            assert txn.metadata_json["service_amount"] == "1000.00"
            assert txn.metadata_json["platform_fee"] == "150.00"
            assert txn.metadata_json["customer_name"] == "Anita Shah"

        assert task_queue.submitted == [(created.payment_id, 0)]
        assert _event_names(events) == ["WorkerPaymentCreated", "EarningsCredited"]

    def test_bank_details_snapshot(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory
    ):
        """Later edits to the worker's bank profile don't touch the payment."""
        worker_id = test_data.create_worker()
        booking_id = test_data.create_booking(worker_id=worker_id)
        created = orchestrator.create_payment(booking_id)

        with session_factory() as db:
            worker = db.get(Worker, worker_id)
            worker.bank_account_number = "99999999999999"
            db.commit()

        payment = orchestrator.get_payment_by_id(created.payment_id)
        assert payment.bank_account_number == "50100123456789"
        assert payment.bank_ifsc_code == "HDFC0001234"
        assert payment.bank_account_holder_name == "Ramesh Patel"
        assert payment.bank_name == "HDFC Bank"

    def test_duplicate_rejected(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory
    ):
        """Second creation for the same booking changes nothing."""
        worker_id = test_data.create_worker()
        booking_id = test_data.create_booking(worker_id=worker_id)
        orchestrator.create_payment(booking_id)

        with pytest.raises(DuplicateError):
            orchestrator.create_payment(booking_id)

        assert _balance(session_factory, worker_id).available_balance == Decimal("850.00")
        assert _transaction_types(session_factory, worker_id) == ["CREDIT"]
        with session_factory() as db:
            assert db.scalar(select(func.count()).select_from(WorkerPayment)) == 1

    @pytest.mark.parametrize(
        "status,payment_status",
        [
            ("IN_PROGRESS", "COMPLETED"),
            ("COMPLETED", "PENDING"),
            ("PAYMENT_PENDING", "PENDING"),
            ("COMPLETED", "REFUNDED"),
        ],
    )
    def test_unpayable_booking_not_found(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory, status, payment_status
    ):
        booking_id = test_data.create_booking(status=status, payment_status=payment_status)

        with pytest.raises(NotFoundError, match="Completed booking with payment not found"):
            orchestrator.create_payment(booking_id)

        with session_factory() as db:
            assert db.scalar(select(func.count()).select_from(WorkerPayment)) == 0
            assert db.scalar(select(func.count()).select_from(WorkerEarnings)) == 0

    def test_unknown_booking_not_found(self, orchestrator: PayoutOrchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.create_payment(uuid4())

    def test_malformed_booking_id(self, orchestrator: PayoutOrchestrator):
        with pytest.raises(ValidationError):
            orchestrator.create_payment("not-a-uuid")

    def test_missing_bank_details(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory, task_queue
    ):
        worker_id = test_data.create_worker(with_bank=False)
        booking_id = test_data.create_booking(worker_id=worker_id)

        with pytest.raises(ValidationError, match="Worker bank details not found"):
            orchestrator.create_payment(booking_id)

        assert _balance(session_factory, worker_id) == EarningsBalance.empty()
        assert task_queue.submitted == []

    def test_second_booking_accumulates(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory
    ):
        worker_id = test_data.create_worker()
        orchestrator.create_payment(test_data.create_booking(price="1000.00", worker_id=worker_id))
        orchestrator.create_payment(test_data.create_booking(price="200.00", worker_id=worker_id))

        balance = _balance(session_factory, worker_id)
        assert balance.total_earnings == Decimal("1020.00")
        assert balance.available_balance == Decimal("1020.00")
        with session_factory() as db:
            assert db.scalar(select(func.count()).select_from(WorkerEarnings)) == 1

    def test_racing_first_payments_share_earnings_row(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory, monkeypatch
    ):
        """The second first-payment of a worker credits the row the first one created."""
        worker_id = test_data.create_worker()
        orchestrator.create_payment(test_data.create_booking(price="1000.00", worker_id=worker_id))

        real_get = EarningsLedger.get
        stale_reads = [None]

        def get(self, worker_id, *, lock=False):
            if stale_reads:
                return stale_reads.pop()
            return real_get(self, worker_id, lock=lock)

        monkeypatch.setattr(EarningsLedger, "get", get)

        created = orchestrator.create_payment(
            test_data.create_booking(price="1000.00", worker_id=worker_id)
        )
        monkeypatch.undo()

        assert created.status == "PENDING"
        balance = _balance(session_factory, worker_id)
        assert balance.total_earnings == Decimal("1700.00")
        assert _transaction_types(session_factory, worker_id) == ["CREDIT", "CREDIT"]
        with session_factory() as db:
            assert db.scalar(select(func.count()).select_from(WorkerEarnings)) == 1


class TestProcessPayment:
    """Processing a pending payment."""

    def test_paid_path(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory, provider, events
    ):
        """Provider accepts: PAID, DEBIT 850.00, available back to 0."""
        worker_id = test_data.create_worker()
        booking_id = test_data.create_booking(price="1000.00", worker_id=worker_id)
        created = orchestrator.create_payment(booking_id)
        events.clear()

        result = orchestrator.process_payment(created.payment_id)

        assert result.status == "PAID"
        assert result.succeeded is True
        assert result.provider_payout_id in provider.payouts
        assert re.fullmatch(r"TXN\d+", result.transaction_id)
        assert result.paid_at is not None

        balance = _balance(session_factory, worker_id)
        assert balance.available_balance == Decimal("0.00")
        assert balance.total_withdrawn == Decimal("850.00")
        assert balance.total_earnings == Decimal("850.00")
        assert balance.last_payout_date is not None
        assert _transaction_types(session_factory, worker_id) == ["CREDIT", "DEBIT"]

        payment = orchestrator.get_payment_by_id(created.payment_id)
        assert payment.status == "PAID"
        assert payment.processed_at is not None
        assert payment.failure_reason is None

        request = provider.payouts[result.provider_payout_id]["request"]
        assert request.amount_minor == 85000
        assert request.currency == "INR"
        assert request.mode == "IMPS"
        assert request.reference_id == f"WPOUT{created.payment_id.hex}"
        assert request.narration == f"Workjunction Payment - {booking_id}"
        assert request.source_account == "2323230041626905"

        assert _event_names(events) == [
            "PayoutProcessingStarted",
            "PayoutPaid",
            "EarningsDebited",
        ]

    def test_provider_failure_marks_failed(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory, provider, events
    ):
        """Provider rejects: FAILED with its description, balances untouched."""
        worker_id = test_data.create_worker()
        created = orchestrator.create_payment(test_data.create_booking(worker_id=worker_id))
        provider.fail_next_payout = "Bank account is invalid"
        events.clear()

        result = orchestrator.process_payment(created.payment_id)

        assert result.status == "FAILED"
        assert result.succeeded is False
        assert result.failure_reason == "Bank account is invalid"

        payment = orchestrator.get_payment_by_id(created.payment_id)
        assert payment.status == "FAILED"
        assert payment.failure_reason == "Bank account is invalid"
        assert payment.provider_payout_id is None

        balance = _balance(session_factory, worker_id)
        assert balance.available_balance == Decimal("850.00")
        assert balance.total_withdrawn == Decimal("0.00")
        assert _transaction_types(session_factory, worker_id) == ["CREDIT"]
        assert _event_names(events) == ["PayoutProcessingStarted", "PayoutFailed"]

    @pytest.mark.parametrize("fail", [False, True])
    def test_reprocessing_rejected(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory, provider, fail
    ):
        """A terminal payment is never processed again."""
        worker_id = test_data.create_worker()
        created = orchestrator.create_payment(test_data.create_booking(worker_id=worker_id))
        if fail:
            provider.fail_next_payout = "Rejected"
        orchestrator.process_payment(created.payment_id)
        balance_before = _balance(session_factory, worker_id)

        with pytest.raises(InvalidStateError) as exc_info:
            orchestrator.process_payment(created.payment_id)

        expected = "FAILED" if fail else "PAID"
        assert exc_info.value.current_status == expected
        assert exc_info.value.message == f"Payment already {expected.lower()}"
        assert len(provider.payouts) == (0 if fail else 1)
        assert _balance(session_factory, worker_id) == balance_before

    def test_unknown_payment(self, orchestrator: PayoutOrchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.process_payment(uuid4())

    def test_malformed_payment_id(self, orchestrator: PayoutOrchestrator):
        with pytest.raises(ValidationError):
            orchestrator.process_payment("12345")

    def test_insufficient_balance(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory, provider
    ):
        """Held funds: payment FAILED with a reason, error raised, provider never called."""
        worker_id = test_data.create_worker()
        created = orchestrator.create_payment(test_data.create_booking(worker_id=worker_id))

        with session_factory() as db:
            ledger = EarningsLedger(db)
            ledger.hold_amount(ledger.get(worker_id), Decimal("100.00"), "Dispute hold")
            db.commit()

        with pytest.raises(InsufficientBalanceError) as exc_info:
            orchestrator.process_payment(created.payment_id)

        assert exc_info.value.required == Decimal("850.00")
        assert exc_info.value.available == Decimal("750.00")

        payment = orchestrator.get_payment_by_id(created.payment_id)
        assert payment.status == "FAILED"
        assert payment.failure_reason == INSUFFICIENT_BALANCE_REASON
        assert provider.payouts == {}

        balance = _balance(session_factory, worker_id)
        assert balance.available_balance == Decimal("750.00")
        assert balance.pending_balance == Decimal("100.00")

    def test_fund_account_reused(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory, provider
    ):
        """One contact + fund account per worker bank account."""
        worker_id = test_data.create_worker()
        first = orchestrator.create_payment(test_data.create_booking(worker_id=worker_id))
        second = orchestrator.create_payment(test_data.create_booking(worker_id=worker_id))

        orchestrator.process_payment(first.payment_id)
        orchestrator.process_payment(second.payment_id)

        assert len(provider.contacts) == 1
        assert len(provider.fund_accounts) == 1
        assert len(provider.payouts) == 2
        with session_factory() as db:
            mapping = db.execute(select(WorkerFundAccount)).scalars().one()
            assert mapping.worker_id == worker_id
            assert mapping.provider == "stub"
            assert mapping.fund_account_id in provider.fund_accounts

    def test_contact_uses_worker_profile(
        self, orchestrator: PayoutOrchestrator, test_data, provider
    ):
        worker_id = test_data.create_worker(name="Sunita Rao", email="sunita@example.com")
        created = orchestrator.create_payment(test_data.create_booking(worker_id=worker_id))

        orchestrator.process_payment(created.payment_id)

        [contact] = provider.contacts.values()
        assert contact == {"name": "Sunita Rao", "email": "sunita@example.com", "phone": "9876543210"}


class TestProcessIfPending:
    """Queue consumer entry point."""

    def test_processes_pending(self, orchestrator: PayoutOrchestrator, test_data):
        created = orchestrator.create_payment(test_data.create_booking())

        result = orchestrator.process_if_pending(created.payment_id)

        assert result is not None
        assert result.status == "PAID"

    def test_skips_already_processed(
        self, orchestrator: PayoutOrchestrator, test_data, provider
    ):
        """Duplicate deliveries don't pay twice."""
        created = orchestrator.create_payment(test_data.create_booking())
        orchestrator.process_payment(created.payment_id)

        assert orchestrator.process_if_pending(created.payment_id) is None
        assert len(provider.payouts) == 1

    def test_skips_unknown(self, orchestrator: PayoutOrchestrator):
        assert orchestrator.process_if_pending(uuid4()) is None


class TestProcessPending:
    """Batch processing."""

    def test_batch_collects_failures(
        self, orchestrator: PayoutOrchestrator, test_data, provider
    ):
        """One provider failure doesn't stop the rest."""
        ids = [orchestrator.create_payment(test_data.create_booking()).payment_id for _ in range(3)]
        provider.fail_next_payout = "Beneficiary bank offline"

        result = orchestrator.process_pending_payments()

        assert result.processed == 3
        assert result.successful == 2
        assert result.failed == 1
        assert result.errors == [{"payment_id": ids[0], "error": "Beneficiary bank offline"}]

        statuses = [orchestrator.get_payment_by_id(i).status for i in ids]
        assert statuses == ["FAILED", "PAID", "PAID"]

    def test_batch_collects_insufficient_balance(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory
    ):
        worker_id = test_data.create_worker()
        created = orchestrator.create_payment(test_data.create_booking(worker_id=worker_id))
        other = orchestrator.create_payment(test_data.create_booking())
        with session_factory() as db:
            ledger = EarningsLedger(db)
            ledger.hold_amount(ledger.get(worker_id), Decimal("850.00"), "Hold")
            db.commit()

        result = orchestrator.process_pending_payments()

        assert result.processed == 2
        assert result.successful == 1
        assert result.failed == 1
        assert result.errors[0]["payment_id"] == created.payment_id
        assert result.errors[0]["error"] == INSUFFICIENT_BALANCE_REASON
        assert orchestrator.get_payment_by_id(other.payment_id).status == "PAID"

    def test_nothing_pending(self, orchestrator: PayoutOrchestrator):
        result = orchestrator.process_pending_payments()

        assert (result.processed, result.successful, result.failed) == (0, 0, 0)
        assert result.errors == []

    def test_only_pending_are_picked_up(
        self, orchestrator: PayoutOrchestrator, test_data, provider
    ):
        done = orchestrator.create_payment(test_data.create_booking())
        orchestrator.process_payment(done.payment_id)
        orchestrator.create_payment(test_data.create_booking())

        result = orchestrator.process_pending_payments()

        assert result.processed == 1
        assert len(provider.payouts) == 2


class TestCustomerPaymentWebhook:
    """Webhook handling."""

    def test_non_completed_ignored(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory
    ):
        booking_id = test_data.create_booking()

        outcome = orchestrator.handle_customer_payment_webhook(str(booking_id), "FAILED", "pay_1")

        assert outcome.action == "ignored"
        assert outcome.payment_id is None
        with session_factory() as db:
            assert db.scalar(select(func.count()).select_from(WorkerPayment)) == 0

    def test_completed_creates_payment(self, orchestrator: PayoutOrchestrator, test_data):
        booking_id = test_data.create_booking()

        outcome = orchestrator.handle_customer_payment_webhook(
            str(booking_id), "COMPLETED", "pay_1"
        )

        assert outcome.action == "created"
        assert orchestrator.get_payment_by_id(outcome.payment_id).booking_id == booking_id

    def test_failures_reported_not_raised(self, orchestrator: PayoutOrchestrator, test_data):
        booking_id = test_data.create_booking()
        orchestrator.handle_customer_payment_webhook(str(booking_id), "COMPLETED")

        duplicate = orchestrator.handle_customer_payment_webhook(str(booking_id), "COMPLETED")
        missing = orchestrator.handle_customer_payment_webhook(str(uuid4()), "COMPLETED")
        malformed = orchestrator.handle_customer_payment_webhook("bogus", "COMPLETED")

        assert duplicate.action == "rejected"
        assert "already exists" in duplicate.message
        assert missing.action == "rejected"
        assert malformed.action == "rejected"


class TestQueries:
    """Read-only queries."""

    def test_worker_payments_newest_first(
        self, orchestrator: PayoutOrchestrator, test_data
    ):
        worker_id = test_data.create_worker()
        ids = [
            orchestrator.create_payment(
                test_data.create_booking(price=price, worker_id=worker_id)
            ).payment_id
            for price in ("100.00", "200.00", "300.00")
        ]
        orchestrator.process_payment(ids[0])

        page = orchestrator.get_worker_payments(worker_id, page=1, limit=2)

        assert [p.worker_payment_id for p in page.payments] == [ids[2], ids[1]]
        assert page.total == 3
        assert page.pages == 2
        assert page.earnings.total_earnings == Decimal("510.00")
        assert page.earnings.total_withdrawn == Decimal("85.00")

        second = orchestrator.get_worker_payments(worker_id, page=2, limit=2)
        assert [p.worker_payment_id for p in second.payments] == [ids[0]]

        paid = orchestrator.get_worker_payments(worker_id, status="PAID")
        assert [p.worker_payment_id for p in paid.payments] == [ids[0]]
        assert paid.total == 1

    def test_worker_without_payments(self, orchestrator: PayoutOrchestrator):
        page = orchestrator.get_worker_payments(uuid4())

        assert page.payments == []
        assert page.total == 0
        assert page.pages == 0
        assert page.earnings == EarningsBalance.empty()

    @pytest.mark.parametrize(
        "kwargs",
        [{"page": 0}, {"limit": 0}, {"limit": 101}, {"status": "SETTLED"}],
    )
    def test_invalid_query(self, orchestrator: PayoutOrchestrator, kwargs):
        with pytest.raises(ValidationError):
            orchestrator.get_worker_payments(uuid4(), **kwargs)

    def test_payment_not_found(self, orchestrator: PayoutOrchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.get_payment_by_id(uuid4())


class TestEarningsHolds:
    """Holding and releasing part of a worker's balance."""

    def test_hold_then_release(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory, events
    ):
        worker_id = test_data.create_worker()
        orchestrator.create_payment(test_data.create_booking(worker_id=worker_id))
        events.clear()

        held = orchestrator.hold_earnings(worker_id, "300.00", "Customer dispute")

        assert held.available_balance == Decimal("550.00")
        assert held.pending_balance == Decimal("300.00")

        released = orchestrator.release_earnings(str(worker_id), Decimal("300"), "Dispute closed")

        assert released.available_balance == Decimal("850.00")
        assert released.pending_balance == Decimal("0.00")
        assert _transaction_types(session_factory, worker_id) == ["CREDIT", "HOLD", "RELEASE"]
        assert _event_names(events) == ["EarningsHeld", "EarningsReleased"]
        assert events[0].amount == Decimal("300.00")
        assert events[0].pending_balance == Decimal("300.00")
        assert events[1].available_balance == Decimal("850.00")

    def test_held_funds_block_processing(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory
    ):
        worker_id = test_data.create_worker()
        created = orchestrator.create_payment(test_data.create_booking(worker_id=worker_id))
        orchestrator.hold_earnings(worker_id, "100.00", "Customer dispute")

        with pytest.raises(InsufficientBalanceError):
            orchestrator.process_payment(created.payment_id)

    def test_hold_beyond_available(
        self, orchestrator: PayoutOrchestrator, test_data, session_factory, events
    ):
        worker_id = test_data.create_worker()
        orchestrator.create_payment(test_data.create_booking(worker_id=worker_id))
        events.clear()

        with pytest.raises(InsufficientBalanceError):
            orchestrator.hold_earnings(worker_id, "850.01", "Too much")

        assert _balance(session_factory, worker_id).pending_balance == Decimal("0.00")
        assert events == []

    def test_unknown_worker(self, orchestrator: PayoutOrchestrator):
        with pytest.raises(NotFoundError, match="Worker earnings not found"):
            orchestrator.release_earnings(uuid4(), "10.00", "Nothing held")

    def test_invalid_amount(self, orchestrator: PayoutOrchestrator, test_data):
        worker_id = test_data.create_worker()
        orchestrator.create_payment(test_data.create_booking(worker_id=worker_id))

        with pytest.raises(ValidationError):
            orchestrator.hold_earnings(worker_id, "ten", "Bad amount")


class TestInvariants:
    """Persisted rows respect the split and balance rules."""

    def test_worker_amount_recomputed(self, db: Session):
        payment = WorkerPayment(
            worker_id=uuid4(),
            customer_id=uuid4(),
            booking_id=uuid4(),
            amount=Decimal("1000.00"),
            platform_fee=Decimal("150.00"),
        )
        payment.worker_amount = Decimal("999.00")
        db.add(payment)
        db.flush()

        assert payment.worker_amount == Decimal("850.00")

        payment.platform_fee = Decimal("100.00")
        assert payment.worker_amount == Decimal("900.00")
