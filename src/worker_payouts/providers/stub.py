"""Stub payout provider for local development and testing.

Replace with RazorpayPayoutProvider (or another real adapter) for production.
"""

from __future__ import annotations

import uuid
from typing import Any

from worker_payouts.errors import ProviderError
from worker_payouts.providers.base import (
    BankDetails,
    PayoutRequest,
    PayoutResponse,
    PayoutStatusResult,
)


class StubPayoutProvider:
    """In-memory payout provider.

    Keeps every contact, fund account and payout it was asked to create so
    tests can assert on the calls.
    """

    provider_name = "stub"

    def __init__(self, auto_process: bool = True):
        """Initialize stub provider.

        Args:
            auto_process: If True, payouts immediately report as processed.
                          If False, payouts stay in 'processing'.
        """
        self.auto_process = auto_process
        self.fail_next_payout: str | None = None
        self.fail_all_payouts: str | None = None
        self.contacts: dict[str, dict[str, Any]] = {}
        self.fund_accounts: dict[str, dict[str, Any]] = {}
        self.payouts: dict[str, dict[str, Any]] = {}

    def create_contact(self, name: str, email: str | None, phone: str | None) -> str:
        """Record a contact."""
        contact_id = f"cont_{uuid.uuid4().hex[:14]}"
        self.contacts[contact_id] = {"name": name, "email": email, "phone": phone}
        return contact_id

    def create_fund_account(self, contact_id: str, bank_details: BankDetails) -> str:
        """Record a fund account for a known contact."""
        if contact_id not in self.contacts:
            raise ProviderError(f"Contact {contact_id} does not exist")
        fund_account_id = f"fa_{uuid.uuid4().hex[:14]}"
        self.fund_accounts[fund_account_id] = {
            "contact_id": contact_id,
            "bank_details": bank_details,
        }
        return fund_account_id

    def create_payout(self, request: PayoutRequest) -> PayoutResponse:
        """Accept a payout unless told to fail."""
        reason = self.fail_next_payout or self.fail_all_payouts
        if self.fail_next_payout:
            self.fail_next_payout = None
        if reason:
            raise ProviderError(reason)
        if request.fund_account_id not in self.fund_accounts:
            raise ProviderError(f"Fund account {request.fund_account_id} does not exist")
        if request.amount_minor <= 0:
            raise ProviderError("The amount must be at least INR 1.00")

        payout_id = f"pout_{uuid.uuid4().hex[:14]}"
        status = "processed" if self.auto_process else "processing"
        self.payouts[payout_id] = {"request": request, "status": status}
        return PayoutResponse(payout_id=payout_id, status=status)

    def get_payout_status(self, reference_id: str) -> PayoutStatusResult | None:
        """Find the latest payout created with the reference."""
        for payout_id, record in reversed(list(self.payouts.items())):
            if record["request"].reference_id == reference_id:
                return PayoutStatusResult(
                    payout_id=payout_id,
                    status=record["status"],
                    failure_reason=record.get("failure_reason"),
                )
        return None

    def simulate_status(
        self,
        payout_id: str,
        status: str,
        failure_reason: str | None = None,
    ) -> None:
        """Change a payout's provider-side status (for testing)."""
        if payout_id in self.payouts:
            self.payouts[payout_id]["status"] = status
            self.payouts[payout_id]["failure_reason"] = failure_reason

    def record_external_payout(
        self,
        reference_id: str,
        status: str,
        failure_reason: str | None = None,
    ) -> str:
        """Register a payout the caller never heard back about (for testing)."""
        payout_id = f"pout_{uuid.uuid4().hex[:14]}"
        self.payouts[payout_id] = {
            "request": PayoutRequest(
                source_account="",
                fund_account_id="",
                amount_minor=0,
                currency="INR",
                mode="IMPS",
                reference_id=reference_id,
                narration="",
            ),
            "status": status,
            "failure_reason": failure_reason,
        }
        return payout_id
