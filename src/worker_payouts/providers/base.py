"""Base protocol and types for payout providers.

All provider adapters must implement the PayoutProvider protocol. Adapters
signal every failure (rejection, transport error, timeout) by raising
ProviderError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol


@dataclass(frozen=True)
class BankDetails:
    """Recipient bank account as captured on the worker payment."""

    account_number: str
    ifsc_code: str
    account_holder_name: str | None = None
    bank_name: str | None = None

    @property
    def masked_account_number(self) -> str:
        """Account number with all but the last four digits hidden."""
        tail = self.account_number[-4:]
        return "*" * max(len(self.account_number) - 4, 0) + tail


@dataclass(frozen=True)
class PayoutRequest:
    """A payout to submit to the provider.

    amount_minor is in the currency's minor unit (paise for INR).
    """

    source_account: str
    fund_account_id: str
    amount_minor: int
    currency: str
    mode: str
    reference_id: str
    narration: str
    purpose: str = "payout"
    notes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PayoutResponse:
    """Provider acknowledgement of a created payout."""

    payout_id: str
    status: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PayoutStatusResult:
    """Current provider-side state of a payout looked up by reference."""

    payout_id: str
    status: str  # queued/pending/processing/processed/reversed/cancelled/rejected/failed
    failure_reason: str | None = None

    @property
    def is_settled(self) -> bool:
        """Money reached the worker."""
        return self.status == "processed"

    @property
    def is_failed(self) -> bool:
        """The provider gave up on the payout."""
        return self.status in ("reversed", "cancelled", "rejected", "failed")


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to minor units (x100)."""
    return int((Decimal(str(amount)) * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PayoutProvider(Protocol):
    """Protocol for payout provider adapters.

    The orchestrator uses these adapters without knowing provider details.
    """

    provider_name: str

    def create_contact(self, name: str, email: str | None, phone: str | None) -> str:
        """Register the payee and return the provider contact id."""
        ...

    def create_fund_account(self, contact_id: str, bank_details: BankDetails) -> str:
        """Register a bank account for a contact and return the fund account id."""
        ...

    def create_payout(self, request: PayoutRequest) -> PayoutResponse:
        """Transfer money to a fund account."""
        ...

    def get_payout_status(self, reference_id: str) -> PayoutStatusResult | None:
        """Look up a payout by the reference it was created with.

        Returns None if the provider has no payout with that reference.
        """
        ...
