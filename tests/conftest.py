"""Pytest fixtures for worker payout tests."""

from __future__ import annotations

from collections.abc import Generator
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from worker_payouts.config import PayoutConfig
from worker_payouts.database import make_session_factory
from worker_payouts.events import DomainEvent, EventEmitter
from worker_payouts.models import Base, Booking, Customer, Worker
from worker_payouts.providers import StubPayoutProvider
from worker_payouts.services import PayoutOrchestrator, ReconciliationService

# In-memory SQLite shared across threads through a single connection
TEST_DATABASE_URL = "sqlite://"


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Create test database engine with a fresh schema."""
    engine = create_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory configured like the application's."""
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Get database session for tests."""
    with session_factory() as session:
        yield session
        session.rollback()


@pytest.fixture
def config() -> PayoutConfig:
    """Payout configuration without processing delay."""
    return PayoutConfig(
        source_account_number="2323230041626905",
        auto_process_delay_seconds=0,
    )


@pytest.fixture
def provider() -> StubPayoutProvider:
    return StubPayoutProvider()


class RecordingQueue:
    """Task queue that only records submissions."""

    def __init__(self) -> None:
        self.submitted: list[tuple[UUID, float]] = []

    def submit(self, payment_id: UUID, delay_seconds: float = 0.0) -> None:
        self.submitted.append((payment_id, delay_seconds))


@pytest.fixture
def task_queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def events() -> list[DomainEvent]:
    """Every event published through the emitter fixture."""
    return []


@pytest.fixture
def emitter(events: list[DomainEvent]) -> EventEmitter:
    emitter = EventEmitter()
    emitter.on_all(events.append)
    return emitter


@pytest.fixture
def orchestrator(
    session_factory: sessionmaker[Session],
    provider: StubPayoutProvider,
    config: PayoutConfig,
    emitter: EventEmitter,
    task_queue: RecordingQueue,
) -> PayoutOrchestrator:
    """Orchestrator wired to the stub provider and a recording queue."""
    return PayoutOrchestrator(
        session_factory,
        provider,
        config,
        emitter=emitter,
        task_queue=task_queue,
    )


@pytest.fixture
def reconciliation(
    session_factory: sessionmaker[Session],
    provider: StubPayoutProvider,
    config: PayoutConfig,
    emitter: EventEmitter,
) -> ReconciliationService:
    return ReconciliationService(session_factory, provider, config, emitter=emitter)


# Test data generators
class PayoutTestData:
    """Test data generator for marketplace records."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def create_worker(self, *, with_bank: bool = True, **overrides: Any) -> UUID:
        """Create a worker, with bank details unless told otherwise."""
        fields: dict[str, Any] = {
            "name": "Ramesh Patel",
            "email": f"worker_{uuid4().hex[:8]}@example.com",
            "phone": "9876543210",
        }
        if with_bank:
            fields.update(
                bank_account_number="50100123456789",
                bank_ifsc_code="HDFC0001234",
                bank_account_holder_name="Ramesh Patel",
                bank_name="HDFC Bank",
            )
        fields.update(overrides)
        with self.session_factory() as db:
            worker = Worker(**fields)
            db.add(worker)
            db.commit()
            return worker.worker_id

    def create_customer(self) -> UUID:
        with self.session_factory() as db:
            customer = Customer(name="Anita Shah", email="anita@example.com")
            db.add(customer)
            db.commit()
            return customer.customer_id

    def create_booking(
        self,
        *,
        price: Decimal | str = "1000.00",
        status: str = "COMPLETED",
        payment_status: str = "COMPLETED",
        worker_id: UUID | None = None,
        customer_id: UUID | None = None,
    ) -> UUID:
        """Create a booking; completed and paid by default."""
        worker_id = worker_id or self.create_worker()
        customer_id = customer_id or self.create_customer()
        with self.session_factory() as db:
            booking = Booking(
                worker_id=worker_id,
                customer_id=customer_id,
                status=status,
                price=Decimal(str(price)),
                booking_date=date(2026, 10, 1),
                payment_status=payment_status,
                payment_amount=Decimal(str(price)) if payment_status == "COMPLETED" else None,
                payment_transaction_id="pay_" + uuid4().hex[:12],
            )
            db.add(booking)
            db.commit()
            return booking.booking_id


@pytest.fixture
def test_data(session_factory: sessionmaker[Session]) -> PayoutTestData:
    """Create test data generator."""
    return PayoutTestData(session_factory)
