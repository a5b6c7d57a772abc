# app/payment_rail.py

"""
Outbound payment rail adapters.

Every transfer is sent with an idempotency key so the rail itself
deduplicates a retried call. Errors are split in three:

    TransientPaymentError   connection / 429 / 5xx, safe to retry with the same key
    PaymentTimeoutError     no answer in time, outcome unknown
    PermanentPaymentError   rejected (bad destination...), never auto-retried
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

import requests
import stripe

from app.money import money2, to_cents

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    transfer_id: str
    status: str = "succeeded"
    fee: Decimal = Decimal("0.00")


class PaymentRailError(Exception):
    retryable = False


class TransientPaymentError(PaymentRailError):
    retryable = True


class PaymentTimeoutError(TransientPaymentError):
    pass


class PermanentPaymentError(PaymentRailError):
    pass


class PaymentRail(Protocol):
    def send_transfer(
        self,
        *,
        idempotency_key: str,
        destination: str,
        amount: Decimal,
        currency: str,
        reference: Optional[str] = None,
    ) -> TransferResult:
        ...


# ---------------------------------------------------------
# Generic HTTP payout gateway
# ---------------------------------------------------------
class HttpPaymentRail:
    def __init__(self, base_url: str, secret: str = "", timeout: float = 30.0, session: Optional[requests.Session] = None):
        if not base_url:
            raise RuntimeError("PAYOUT_RAIL_URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.timeout = timeout
        self.http = session or requests.Session()

    def send_transfer(
        self,
        *,
        idempotency_key: str,
        destination: str,
        amount: Decimal,
        currency: str,
        reference: Optional[str] = None,
    ) -> TransferResult:
        payload = {
            "destination": destination,
            "amount": str(money2(amount)),
            "currency": currency,
            "reference": reference,
        }
        headers = {
            "X-Idempotency-Key": idempotency_key,
            "X-Payout-Secret": self.secret,
        }

        try:
            r = self.http.post(f"{self.base_url}/transfers", json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise PaymentTimeoutError(f"Payment rail timeout after {self.timeout}s") from e
        except requests.RequestException as e:
            raise TransientPaymentError(f"Payment rail unreachable: {e}") from e

        if r.status_code == 429 or r.status_code >= 500:
            raise TransientPaymentError(f"Payment rail error {r.status_code}: {r.text[:500]}")
        if r.status_code >= 400:
            raise PermanentPaymentError(f"Payment rail rejected transfer ({r.status_code}): {r.text[:500]}")

        try:
            data = r.json()
        except ValueError as e:
            # 2xx with garbage body: the transfer may have gone through
            raise PaymentTimeoutError("Payment rail returned an unreadable response") from e

        transfer_id = data.get("transfer_id") or data.get("id")
        if not transfer_id:
            raise PaymentTimeoutError("Payment rail response has no transfer id")

        logger.info("RAIL: transfer accepted transfer_id=%s key=%s", transfer_id, idempotency_key)
        return TransferResult(
            transfer_id=str(transfer_id),
            status=data.get("status") or "succeeded",
            fee=money2(Decimal(str(data.get("fee") or "0"))),
        )


# ---------------------------------------------------------
# Stripe Connect transfers
# ---------------------------------------------------------
class StripePaymentRail:
    def __init__(self, api_key: str):
        if not api_key:
            raise RuntimeError("STRIPE_SECRET_KEY is not configured")
        stripe.api_key = api_key

    def send_transfer(
        self,
        *,
        idempotency_key: str,
        destination: str,
        amount: Decimal,
        currency: str,
        reference: Optional[str] = None,
    ) -> TransferResult:
        try:
            transfer = stripe.Transfer.create(
                amount=to_cents(amount),
                currency=currency.lower(),
                destination=destination,
                transfer_group=reference,
                metadata={"reference": reference or ""},
                idempotency_key=idempotency_key,
            )
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            raise TransientPaymentError(getattr(e, "user_message", None) or str(e)) from e
        except (stripe.InvalidRequestError, stripe.PermissionError, stripe.AuthenticationError) as e:
            raise PermanentPaymentError(getattr(e, "user_message", None) or str(e)) from e

        logger.info("RAIL: stripe transfer created transfer_id=%s key=%s", transfer.id, idempotency_key)
        return TransferResult(transfer_id=transfer.id, status="succeeded")


def build_payment_rail(settings) -> PaymentRail:
    kind = (settings.payout_rail or "http").strip().lower()
    if kind == "stripe":
        return StripePaymentRail(settings.stripe_secret_key)
    if kind == "http":
        return HttpPaymentRail(
            settings.payout_rail_url,
            secret=settings.payout_rail_secret,
            timeout=settings.payout_rail_timeout_seconds,
        )
    raise RuntimeError(f"Unknown payout rail: {settings.payout_rail}")
