"""Error taxonomy for the payout pipeline.

Request-level errors (not found, duplicate, validation, invalid state) are
mapped to 4xx responses by the API layer. ProviderError raised while
processing a payout is persisted on the payment as a failure reason instead
of propagating.
"""

from __future__ import annotations

from decimal import Decimal


class PayoutError(Exception):
    """Base class for payout pipeline errors."""

    code = "PAYOUT_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(PayoutError):
    """Booking, worker, earnings or payment does not exist."""

    code = "NOT_FOUND"


class DuplicateError(PayoutError):
    """A payment already exists for the booking."""

    code = "DUPLICATE"


class ValidationError(PayoutError):
    """Malformed input or missing worker bank details."""

    code = "VALIDATION_ERROR"


class InvalidStateError(PayoutError):
    """Operation not allowed in the payment's current status."""

    code = "INVALID_STATE"

    def __init__(self, current_status: str, message: str | None = None):
        self.current_status = current_status
        super().__init__(message or f"Payment already {current_status.lower()}")


class InsufficientBalanceError(PayoutError):
    """A ledger operation would drive a balance negative."""

    code = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        message: str,
        *,
        required: Decimal | None = None,
        available: Decimal | None = None,
    ):
        self.required = required
        self.available = available
        super().__init__(message)


class ProviderError(PayoutError):
    """The external payout provider rejected the request or timed out."""

    code = "PROVIDER_ERROR"

    def __init__(self, description: str, *, retryable: bool = False):
        self.description = description
        self.retryable = retryable
        super().__init__(description)
