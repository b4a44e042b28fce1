"""Razorpay X payout adapter.

Talks to the Razorpay REST API over httpx with basic auth. Every failure
mode (HTTP error status, transport error, timeout) surfaces as ProviderError
so the orchestrator can persist it as the payment's failure reason.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from worker_payouts.errors import ProviderError
from worker_payouts.providers.base import (
    BankDetails,
    PayoutRequest,
    PayoutResponse,
    PayoutStatusResult,
)

logger = logging.getLogger(__name__)

RAZORPAY_BASE_URL = "https://api.razorpay.com/v1"

# Razorpay narrations: alphanumerics and spaces, at most 30 characters
_NARRATION_DISALLOWED = re.compile(r"[^A-Za-z0-9 ]+")
_NARRATION_MAX = 30


def clean_narration(narration: str) -> str:
    """Strip characters Razorpay rejects and truncate."""
    return _NARRATION_DISALLOWED.sub(" ", narration).strip()[:_NARRATION_MAX].strip()


class RazorpayPayoutProvider:
    """Payout provider backed by Razorpay X.

    Args:
        key_id: API key id.
        key_secret: API key secret.
        timeout_seconds: Per-request timeout; a timeout is a provider failure.
        base_url: Override for the API root.
        client: Pre-built httpx client (tests inject a MockTransport here).
    """

    provider_name = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        *,
        account_number: str = "",
        timeout_seconds: float = 30.0,
        base_url: str = RAZORPAY_BASE_URL,
        client: httpx.Client | None = None,
    ):
        self.account_number = account_number
        self._client = client or httpx.Client(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        """Release pooled connections."""
        self._client.close()

    def create_contact(self, name: str, email: str | None, phone: str | None) -> str:
        """Create a contact of type employee."""
        payload: dict[str, Any] = {"name": name, "type": "employee"}
        if email:
            payload["email"] = email
        if phone:
            payload["contact"] = phone
        data = self._request("POST", "/contacts", json=payload)
        return _entity_id(data, "contact")

    def create_fund_account(self, contact_id: str, bank_details: BankDetails) -> str:
        """Create a bank_account fund account for a contact."""
        data = self._request(
            "POST",
            "/fund_accounts",
            json={
                "contact_id": contact_id,
                "account_type": "bank_account",
                "bank_account": {
                    "name": bank_details.account_holder_name or "",
                    "ifsc": bank_details.ifsc_code,
                    "account_number": bank_details.account_number,
                },
            },
        )
        return _entity_id(data, "fund account")

    def create_payout(self, request: PayoutRequest) -> PayoutResponse:
        """Create a payout; the reference doubles as the idempotency key."""
        data = self._request(
            "POST",
            "/payouts",
            json={
                "account_number": request.source_account or self.account_number,
                "fund_account_id": request.fund_account_id,
                "amount": request.amount_minor,
                "currency": request.currency,
                "mode": request.mode,
                "purpose": request.purpose,
                "queue_if_low_balance": True,
                "reference_id": request.reference_id,
                "narration": clean_narration(request.narration),
                "notes": request.notes,
            },
            headers={"X-Payout-Idempotency": request.reference_id},
        )
        status = str(data.get("status", ""))
        if status in ("rejected", "failed", "cancelled", "reversed"):
            raise ProviderError(_status_description(data) or f"Payout {status}")
        return PayoutResponse(payout_id=_entity_id(data, "payout"), status=status, raw=data)

    def get_payout_status(self, reference_id: str) -> PayoutStatusResult | None:
        """Look up the most recent payout created with a reference id."""
        data = self._request(
            "GET",
            "/payouts",
            params={"account_number": self.account_number, "reference_id": reference_id},
        )
        items = data.get("items") or []
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise ProviderError("Malformed payout list from payout provider")
        if not items:
            return None
        latest = max(items, key=lambda item: item.get("created_at", 0))
        return PayoutStatusResult(
            payout_id=_entity_id(latest, "payout"),
            status=str(latest.get("status", "")),
            failure_reason=_status_description(latest),
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request and translate failures into ProviderError."""
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Razorpay %s %s timed out", method, path)
            raise ProviderError("Payout provider request timed out", retryable=True) from e
        except httpx.HTTPError as e:
            logger.warning("Razorpay %s %s transport error: %s", method, path, e)
            raise ProviderError(f"Payout provider unreachable: {e}", retryable=True) from e

        if response.is_error:
            description = _error_description(response)
            logger.warning(
                "Razorpay %s %s failed with %s: %s",
                method,
                path,
                response.status_code,
                description,
            )
            raise ProviderError(description, retryable=response.status_code >= 500)

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.warning("Razorpay %s %s returned an unreadable body", method, path)
            raise ProviderError("Invalid response from payout provider")
        return data


def _entity_id(data: dict[str, Any], entity: str) -> str:
    """The id of a created or listed entity; a missing id is a provider failure."""
    entity_id = data.get("id")
    if not entity_id:
        raise ProviderError(f"Payout provider returned a {entity} without an id")
    return str(entity_id)


def _error_description(response: httpx.Response) -> str:
    """Extract error.description from a Razorpay error body."""
    try:
        body = response.json()
    except ValueError:
        return f"Razorpay processing failed (HTTP {response.status_code})"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("description"):
        return str(error["description"])
    return f"Razorpay processing failed (HTTP {response.status_code})"


def _status_description(payout: dict[str, Any]) -> str | None:
    """Failure description carried on a payout entity, if any."""
    details = payout.get("status_details") or {}
    return details.get("description") or payout.get("failure_reason")
