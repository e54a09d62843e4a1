"""
Stripe payments through the official SDK.

StripeClient is constructed explicitly with a secret key; the key is resolved
per request from the "payments" settings row first, then STRIPE_SECRET_KEY.
Every call passes the key per request (api_key=...) so the SDK's module-level
key is never set.

Webhook signatures are checked with stripe.WebhookSignature against the raw
request body and the endpoint's webhook secret.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import stripe

from storefront.core.errors import PaymentError, SignatureVerificationError
from storefront.pricing.money import to_cents
from storefront.utils.logger import get_logger

logger = get_logger("payments")

SIGNATURE_TOLERANCE_SECONDS = 300

# Intents in these states can still be confirmed by the customer
REUSABLE_INTENT_STATUSES = (
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
    "processing",
)


def _intent_dict(intent: Any) -> Dict[str, Any]:
    return {
        "id": intent["id"],
        "client_secret": intent["client_secret"],
        "status": intent["status"],
        "amount": intent["amount"],
    }


class StripeClient:
    """PaymentIntent calls for one secret key."""

    def __init__(self, secret_key: str):
        self.secret_key = secret_key

    def _call(self, action: str, fn, *args, **kwargs) -> Dict[str, Any]:
        try:
            intent = fn(*args, api_key=self.secret_key, **kwargs)
        except stripe.StripeError as e:
            message = e.user_message or str(e)
            logger.error("stripe: action=%s status=%s error=%s", action, e.http_status, message)
            raise PaymentError(f"Payment provider error: {message}")
        logger.info("stripe: action=%s intent_id=%s result=success", action, intent["id"])
        return _intent_dict(intent)

    def create_payment_intent(
        self,
        amount: float,
        currency: str = "usd",
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a PaymentIntent for a dollar amount (sent to Stripe in cents)."""
        return self._call(
            "create_payment_intent",
            stripe.PaymentIntent.create,
            amount=to_cents(amount),
            currency=currency,
            metadata=metadata or {},
            automatic_payment_methods={"enabled": True},
            idempotency_key=idempotency_key,
        )

    def retrieve_payment_intent(self, intent_id: str) -> Dict[str, Any]:
        return self._call("retrieve_payment_intent", stripe.PaymentIntent.retrieve, intent_id)


def construct_event(
    payload: bytes,
    signature_header: Optional[str],
    secret: str,
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
) -> Dict[str, Any]:
    """
    Verify a webhook signature and parse the event body.

    Raises:
        SignatureVerificationError: header missing or malformed, no matching
            v1 signature, timestamp outside the tolerance window, or a body
            that is not UTF-8 JSON.
    """
    if not signature_header:
        raise SignatureVerificationError("Missing Stripe-Signature header")
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        raise SignatureVerificationError("Webhook body is not valid UTF-8")
    try:
        stripe.WebhookSignature.verify_header(body, signature_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning("webhook: signature rejected error=%s", e.user_message or e)
        raise SignatureVerificationError("Webhook signature verification failed")
    try:
        return json.loads(body)
    except ValueError:
        raise SignatureVerificationError("Webhook body is not valid JSON")
