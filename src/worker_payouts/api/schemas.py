"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer

T = TypeVar("T")


# ============================================================================
# Envelopes
# ============================================================================


class ApiResponse(BaseModel, Generic[T]):
    """Successful response envelope."""

    success: bool = True
    message: str
    data: T | None = None


class ErrorResponse(BaseModel):
    """Error response envelope."""

    success: bool = False
    message: str
    code: str


# ============================================================================
# Requests
# ============================================================================


class CustomerPaymentWebhook(BaseModel):
    """Customer payment notification from the payment gateway integration."""

    model_config = ConfigDict(populate_by_name=True)

    booking_id: str = Field(alias="bookingId", min_length=1)
    payment_status: str = Field(alias="paymentStatus", min_length=1)
    transaction_id: str | None = Field(default=None, alias="transactionId")


class CreatePaymentRequest(BaseModel):
    """Manual worker payment creation."""

    model_config = ConfigDict(populate_by_name=True)

    booking_id: str = Field(alias="bookingId", min_length=1)


class ReconcileRequest(BaseModel):
    """Optional override of the stuck-payment age threshold."""

    older_than_minutes: int | None = Field(default=None, ge=1)


# ============================================================================
# Payments
# ============================================================================


class WorkerPaymentResponse(BaseModel):
    """Schema for worker payment response."""

    model_config = ConfigDict(from_attributes=True)

    worker_payment_id: UUID
    worker_id: UUID
    customer_id: UUID
    booking_id: UUID
    amount: Decimal
    platform_fee: Decimal
    worker_amount: Decimal
    status: str
    payment_method: str
    bank_account_number: str | None = None
    bank_ifsc_code: str | None = None
    bank_account_holder_name: str | None = None
    bank_name: str | None = None
    transaction_id: str | None = None
    provider_payout_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime | None = None
    processed_at: datetime | None = None
    paid_at: datetime | None = None

    @field_serializer("bank_account_number")
    def _mask_account(self, value: str | None) -> str | None:
        if not value:
            return value
        return "X" * max(len(value) - 4, 0) + value[-4:]


class PaymentCreatedResponse(BaseModel):
    """Schema for a newly created worker payment."""

    model_config = ConfigDict(from_attributes=True)

    payment_id: UUID
    booking_id: UUID
    worker_id: UUID
    amount: Decimal
    platform_fee: Decimal
    worker_amount: Decimal
    status: str


class PayoutResultResponse(BaseModel):
    """Schema for the outcome of processing one payment."""

    model_config = ConfigDict(from_attributes=True)

    payment_id: UUID
    status: str
    worker_amount: Decimal
    provider_payout_id: str | None = None
    transaction_id: str | None = None
    paid_at: datetime | None = None
    failure_reason: str | None = None


class BatchErrorItem(BaseModel):
    payment_id: UUID
    error: str | None = None


class BatchResultResponse(BaseModel):
    """Schema for a batch processing run."""

    model_config = ConfigDict(from_attributes=True)

    processed: int
    successful: int
    failed: int
    errors: list[BatchErrorItem]


class WebhookResponse(BaseModel):
    """What the webhook did with the notification."""

    model_config = ConfigDict(from_attributes=True)

    booking_id: str
    action: str
    message: str
    payment_id: UUID | None = None


class ReconciliationResponse(BaseModel):
    """Schema for a reconciliation run."""

    model_config = ConfigDict(from_attributes=True)

    checked: int
    paid: int
    failed: int
    still_processing: int
    errors: list[dict[str, Any]]


# ============================================================================
# Worker history
# ============================================================================


class EarningsSummary(BaseModel):
    """Current balances of a worker."""

    model_config = ConfigDict(from_attributes=True)

    total_earnings: Decimal
    available_balance: Decimal
    pending_balance: Decimal
    total_withdrawn: Decimal
    last_payout_date: datetime | None = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class WorkerPaymentsResponse(BaseModel):
    """Schema for a page of a worker's payments."""

    payments: list[WorkerPaymentResponse]
    earnings: EarningsSummary
    pagination: Pagination
