"""Payout provider adapters."""

from worker_payouts.providers.base import (
    BankDetails,
    PayoutProvider,
    PayoutRequest,
    PayoutResponse,
    PayoutStatusResult,
    to_minor_units,
)
from worker_payouts.providers.razorpay import RazorpayPayoutProvider
from worker_payouts.providers.stub import StubPayoutProvider

__all__ = [
    "BankDetails",
    "PayoutProvider",
    "PayoutRequest",
    "PayoutResponse",
    "PayoutStatusResult",
    "to_minor_units",
    "RazorpayPayoutProvider",
    "StubPayoutProvider",
]
