"""Domain event types for payout operations.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Traceable via metadata
- Serializable for logging and persistence

Events are published after the transaction that caused them commits.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    PAYMENT = "payment"
    LEDGER = "ledger"
    RECONCILIATION = "reconciliation"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: UUID  # Links related events
    actor_type: str  # 'api', 'webhook', 'queue', 'cli', 'system'
    source_service: str

    @classmethod
    def create(
        cls,
        correlation_id: UUID | None = None,
        actor_type: str = "system",
        source_service: str = "worker_payouts",
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            correlation_id=correlation_id or uuid4(),
            actor_type=actor_type,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = _serialize(asdict(self))
        data["event_type"] = self.event_type
        data["category"] = self.category.value
        return data

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _serialize(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_serialize(v) for v in obj]
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj


# =============================================================================
# Payment Events
# =============================================================================


@dataclass(frozen=True)
class WorkerPaymentCreated(DomainEvent):
    """A completed booking produced a pending worker payment."""

    payment_id: UUID
    booking_id: UUID
    worker_id: UUID
    amount: Decimal
    platform_fee: Decimal
    worker_amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


@dataclass(frozen=True)
class PayoutProcessingStarted(DomainEvent):
    """A payment moved to PROCESSING."""

    payment_id: UUID
    worker_id: UUID
    worker_amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


@dataclass(frozen=True)
class PayoutPaid(DomainEvent):
    """The provider accepted the payout and the ledger was debited."""

    payment_id: UUID
    worker_id: UUID
    worker_amount: Decimal
    provider_payout_id: str
    transaction_id: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


@dataclass(frozen=True)
class PayoutFailed(DomainEvent):
    """The payout could not be completed; balances are untouched."""

    payment_id: UUID
    worker_id: UUID
    worker_amount: Decimal
    failure_reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


# =============================================================================
# Ledger Events
# =============================================================================


@dataclass(frozen=True)
class LedgerEvent(DomainEvent):
    """Base for balance mutations."""

    worker_id: UUID
    transaction_id: str
    amount: Decimal
    available_balance: Decimal
    pending_balance: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.LEDGER


@dataclass(frozen=True)
class EarningsCredited(LedgerEvent):
    """CREDIT posted."""


@dataclass(frozen=True)
class EarningsDebited(LedgerEvent):
    """DEBIT posted for a payout."""


@dataclass(frozen=True)
class EarningsHeld(LedgerEvent):
    """HOLD posted."""


@dataclass(frozen=True)
class EarningsReleased(LedgerEvent):
    """RELEASE posted."""


# =============================================================================
# Reconciliation Events
# =============================================================================


@dataclass(frozen=True)
class StuckPaymentReconciled(DomainEvent):
    """A payment left in PROCESSING was resolved from provider state."""

    payment_id: UUID
    resolved_status: str
    provider_status: str | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.RECONCILIATION


LEDGER_EVENTS: dict[str, type[LedgerEvent]] = {
    "CREDIT": EarningsCredited,
    "DEBIT": EarningsDebited,
    "HOLD": EarningsHeld,
    "RELEASE": EarningsReleased,
}
