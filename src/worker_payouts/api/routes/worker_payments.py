"""Worker payment API endpoints."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Body, Path, Query, status

from worker_payouts.api.dependencies import Analytics, Orchestrator, Reconciliation
from worker_payouts.api.schemas import (
    ApiResponse,
    BatchResultResponse,
    CreatePaymentRequest,
    CustomerPaymentWebhook,
    EarningsSummary,
    ErrorResponse,
    Pagination,
    PaymentCreatedResponse,
    PayoutResultResponse,
    ReconcileRequest,
    ReconciliationResponse,
    WebhookResponse,
    WorkerPaymentResponse,
    WorkerPaymentsResponse,
)

router = APIRouter(prefix="/worker-payments", tags=["worker-payments"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# ============================================================================
# Creation
# ============================================================================


@router.post(
    "/webhook/customer-payment",
    response_model=ApiResponse[WebhookResponse],
)
def customer_payment_webhook(
    orchestrator: Orchestrator,
    payload: CustomerPaymentWebhook,
) -> ApiResponse[WebhookResponse]:
    """Acknowledge a customer payment and create the worker payment when completed."""
    outcome = orchestrator.handle_customer_payment_webhook(
        payload.booking_id,
        payload.payment_status,
        payload.transaction_id,
    )
    return ApiResponse[WebhookResponse](
        message=outcome.message,
        data=WebhookResponse.model_validate(outcome),
    )


@router.post(
    "/create",
    response_model=ApiResponse[PaymentCreatedResponse],
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
def create_worker_payment(
    orchestrator: Orchestrator,
    payload: CreatePaymentRequest,
) -> ApiResponse[PaymentCreatedResponse]:
    """Create the worker payment for a completed booking."""
    created = orchestrator.create_payment(payload.booking_id)
    return ApiResponse[PaymentCreatedResponse](
        message="Worker payment created successfully",
        data=PaymentCreatedResponse.model_validate(created),
    )


# ============================================================================
# Processing
# ============================================================================


@router.post(
    "/process/{payment_id}",
    response_model=ApiResponse[PayoutResultResponse],
    responses={**ERROR_RESPONSES, 422: {"model": ErrorResponse}},
)
def process_worker_payment(
    orchestrator: Orchestrator,
    payment_id: Annotated[str, Path()],
) -> ApiResponse[PayoutResultResponse]:
    """Send a pending payment to the payout provider."""
    result = orchestrator.process_payment(payment_id)
    message = (
        "Payment processed successfully"
        if result.succeeded
        else f"Payment failed: {result.failure_reason}"
    )
    return ApiResponse[PayoutResultResponse](
        message=message,
        data=PayoutResultResponse.model_validate(result),
    )


@router.post(
    "/process-pending",
    response_model=ApiResponse[BatchResultResponse],
)
def process_pending_payments(
    orchestrator: Orchestrator,
) -> ApiResponse[BatchResultResponse]:
    """Process every pending payment."""
    result = orchestrator.process_pending_payments()
    return ApiResponse[BatchResultResponse](
        message=f"Processed {result.processed} payments",
        data=BatchResultResponse.model_validate(result),
    )


@router.post(
    "/reconcile",
    response_model=ApiResponse[ReconciliationResponse],
)
def reconcile_stuck_payments(
    reconciliation: Reconciliation,
    payload: Annotated[ReconcileRequest | None, Body()] = None,
) -> ApiResponse[ReconciliationResponse]:
    """Resolve payments stuck in PROCESSING from provider state."""
    older_than = payload.older_than_minutes if payload else None
    result = reconciliation.reconcile_stuck_payments(older_than)
    return ApiResponse[ReconciliationResponse](
        message=f"Reconciled {result.paid + result.failed} of {result.checked} stuck payments",
        data=ReconciliationResponse.model_validate(result),
    )


# ============================================================================
# Queries
# ============================================================================


@router.get(
    "/worker/{worker_id}",
    response_model=ApiResponse[WorkerPaymentsResponse],
    responses={400: {"model": ErrorResponse}},
)
def get_worker_payments(
    orchestrator: Orchestrator,
    worker_id: Annotated[str, Path()],
    page: Annotated[int, Query()] = 1,
    limit: Annotated[int, Query()] = 10,
    payment_status: Annotated[str | None, Query(alias="status")] = None,
) -> ApiResponse[WorkerPaymentsResponse]:
    """Payment history and balances of a worker."""
    result = orchestrator.get_worker_payments(worker_id, page, limit, payment_status)
    return ApiResponse[WorkerPaymentsResponse](
        message="Worker payments retrieved",
        data=WorkerPaymentsResponse(
            payments=[WorkerPaymentResponse.model_validate(p) for p in result.payments],
            earnings=EarningsSummary.model_validate(result.earnings),
            pagination=Pagination(
                page=result.page,
                limit=result.limit,
                total=result.total,
                pages=result.pages,
            ),
        ),
    )


@router.get(
    "/stats",
    response_model=ApiResponse[dict],
    responses={400: {"model": ErrorResponse}},
)
def get_payout_stats(
    analytics: Analytics,
    start: Annotated[datetime | None, Query()] = None,
    end: Annotated[datetime | None, Query()] = None,
) -> ApiResponse[dict]:
    """Payout totals per status over an optional creation window."""
    summary = analytics.summary(start, end)
    return ApiResponse[dict](message="Payout statistics", data=summary.to_dict())


@router.get(
    "/{payment_id}",
    response_model=ApiResponse[WorkerPaymentResponse],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def get_worker_payment(
    orchestrator: Orchestrator,
    payment_id: Annotated[str, Path()],
) -> ApiResponse[WorkerPaymentResponse]:
    """Fetch one payment."""
    payment = orchestrator.get_payment_by_id(payment_id)
    return ApiResponse[WorkerPaymentResponse](
        message="Worker payment retrieved",
        data=WorkerPaymentResponse.model_validate(payment),
    )
