"""
Stripe PaymentIntent Gateway
============================

Intent-based gateway backed by the official `stripe` SDK.

Flow
----
1. `initiate` creates a PaymentIntent and returns its `client_secret`. The
   frontend confirms the card with Stripe.js.
2. `retrieve_status` is used by the synchronous confirm endpoint.
3. `parse_webhook` verifies the `Stripe-Signature` header of inbound events
   (`payment_intent.succeeded`, `payment_intent.payment_failed`,
   `charge.refunded`).

Each gateway instance owns its own `stripe.StripeClient`, so no API key is
ever stored on the `stripe` module.

Author: DSP Development Team
Date: 2025-09-03
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import stripe

from core.exceptions import ConfigurationError, GatewayError, WebhookSignatureError

from .base import (
    FLOW_INTENT,
    GatewayClient,
    InitiationResult,
    ProviderStatus,
    RefundResult,
    StatusResult,
    ValidationResult,
)

logger = logging.getLogger(__name__)

# Stripe expects the smallest currency unit, except for these currencies.
ZERO_DECIMAL_CURRENCIES = {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
                           "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}

PENDING_INTENT_STATUSES = {
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
    "requires_capture",
    "processing",
}


def as_dict(obj) -> Dict[str, Any]:
    """Stripe SDK objects and test doubles both end up as plain dicts."""
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def to_minor_units(amount: Decimal, currency: str) -> int:
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: Optional[int], currency: str) -> Optional[Decimal]:
    if value is None:
        return None
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(value)
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


class StripeIntentGateway(GatewayClient):
    name = "stripe"
    flow = FLOW_INTENT

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str = "",
        publishable_key: str = "",
        live_mode: bool = False,
        timeout: int = 30,
        client: Optional[Any] = None,
    ) -> None:
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.publishable_key = publishable_key
        self.live_mode = live_mode
        self.timeout = timeout
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not self.secret_key:
                raise ConfigurationError(
                    "Stripe secret key is not configured "
                    f"({'STRIPE_LIVE_SECRET_KEY' if self.live_mode else 'STRIPE_TEST_SECRET_KEY'})"
                )
            self._client = stripe.StripeClient(
                self.secret_key,
                http_client=stripe.RequestsClient(timeout=self.timeout),
            )
        return self._client

    # ---------- GatewayClient ----------

    def initiate(self, amount, currency, metadata):
        params = {
            "amount": to_minor_units(amount, currency),
            "currency": currency.lower(),
            "metadata": {k: str(v) for k, v in (metadata or {}).items() if v is not None},
            "automatic_payment_methods": {"enabled": True},
        }
        if metadata and metadata.get("description"):
            params["description"] = metadata["description"]
        if metadata and metadata.get("receipt_email"):
            params["receipt_email"] = metadata["receipt_email"]

        intent = as_dict(self._call(self.client.payment_intents.create, params=params))
        logger.info("Created Stripe PaymentIntent %s", intent["id"])
        return InitiationResult(
            transaction_ref=intent["id"],
            client_token=intent["client_secret"],
            raw={"status": intent["status"]},
        )

    def retrieve_status(self, transaction_ref):
        intent = as_dict(self._call(self.client.payment_intents.retrieve, transaction_ref))
        return self.status_from_intent(intent)

    def validate(self, validation_ref):
        # PaymentIntents carry no separate validation id; the intent is the proof.
        status = self.retrieve_status(validation_ref)
        return ValidationResult(
            valid=status.succeeded,
            amount=status.amount,
            currency=status.currency,
            raw_status=status.raw.get("status", ""),
            transaction_ref=validation_ref,
            gateway_transaction_ref=status.gateway_transaction_ref,
            raw=status.raw,
        )

    def refund(self, transaction_ref, amount, reason="", gateway_transaction_ref=None):
        intent = as_dict(self._call(self.client.payment_intents.retrieve, transaction_ref))
        currency = intent["currency"]
        params = {
            "payment_intent": transaction_ref,
            "amount": to_minor_units(amount, currency),
            "reason": "requested_by_customer",
            "metadata": {"reason": reason[:500]} if reason else {},
        }
        refund = as_dict(self._call(self.client.refunds.create, params=params))
        logger.info("Created Stripe refund %s for %s", refund["id"], transaction_ref)
        return RefundResult(refund_ref=refund["id"], status=refund["status"])

    # ---------- webhooks ----------

    def parse_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verify and decode a Stripe webhook delivery.

        Raises:
            ConfigurationError: no webhook signing secret configured
            WebhookSignatureError: missing/invalid signature or malformed body
        """
        if not self.webhook_secret:
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid Stripe signature: {e}")
        except ValueError as e:
            raise WebhookSignatureError(f"Malformed webhook payload: {e}")
        return as_dict(event)

    @staticmethod
    def status_from_intent(intent) -> StatusResult:
        """Map a PaymentIntent object (SDK object or plain dict) to a StatusResult."""
        intent_status = intent["status"]
        currency = intent.get("currency") or ""
        error = intent.get("last_payment_error") or None
        error_detail = error.get("message") if error else None

        if intent_status == "succeeded":
            status = ProviderStatus.SUCCEEDED
        elif intent_status == "canceled":
            status = ProviderStatus.FAILED
            error_detail = error_detail or intent.get("cancellation_reason") or "canceled"
        elif intent_status == "requires_payment_method" and error:
            status = ProviderStatus.FAILED
        elif intent_status in PENDING_INTENT_STATUSES:
            status = ProviderStatus.PENDING
        else:
            status = ProviderStatus.FAILED
            error_detail = error_detail or f"unexpected intent status {intent_status}"

        received = intent.get("amount_received") or intent.get("amount")
        return StatusResult(
            status=status,
            amount=from_minor_units(received, currency),
            currency=currency.upper(),
            gateway_transaction_ref=intent.get("latest_charge") or intent["id"],
            validation_ref=intent["id"],
            error_detail=error_detail,
            raw={"status": intent_status, "failure_code": (error or {}).get("code")},
        )

    def _call(self, method, *args, **kwargs):
        try:
            return method(*args, **kwargs)
        except stripe.CardError as e:
            raise GatewayError(e.user_message or str(e), GatewayError.KIND_DECLINED, self.name,
                               details={"decline_code": getattr(e, "code", None)})
        except stripe.InvalidRequestError as e:
            raise GatewayError(e.user_message or str(e), GatewayError.KIND_INVALID_REQUEST, self.name)
        except stripe.AuthenticationError as e:
            logger.error("Stripe authentication failed: %s", e)
            raise GatewayError("Stripe authentication failed", GatewayError.KIND_AUTH, self.name)
        except stripe.APIConnectionError as e:
            logger.warning("Stripe unreachable: %s", e)
            raise GatewayError("Stripe is unreachable", GatewayError.KIND_CONNECTION, self.name)
        except stripe.StripeError as e:
            logger.error("Stripe API error: %s", e)
            raise GatewayError(str(e) or "Stripe API error", GatewayError.KIND_API_ERROR, self.name)
