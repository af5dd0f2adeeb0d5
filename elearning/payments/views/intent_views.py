"""
Intent-based Payment Views (Stripe PaymentIntents)
==================================================

Endpoints
---------

1. IntentInitView
   - URL: /api/elearning/payments/intent/init/
   - Method: POST
   - Auth: Required (owner of the enrollment)
   - Body: {"enrollment_id": 7, "method": "intent_gateway"}
   - Purpose:
       Creates a PaymentIntent and a pending Payment. Returns the
       client_secret for Stripe.js.

2. IntentConfirmView
   - URL: /api/elearning/payments/intent/confirm/
   - Method: POST
   - Auth: Required (owner of the payment)
   - Body: {"transaction_ref": "pi_...", "payment_id": 12}
   - Purpose:
       Synchronous confirmation right after the browser authorized the
       payment. Retrieves the PaymentIntent status and reconciles.

3. StripeWebhookView
   - URL: /api/elearning/payments/webhook/
   - Method: POST
   - Auth: Stripe-Signature header
   - Purpose:
       Receives payment_intent.succeeded / payment_failed / canceled and
       charge.refunded. Answers 200 once the event is recorded, including
       duplicates and no-ops; 400 only for signature/payload failures.

4. StripeConfigView
   - URL: /api/elearning/payments/intent/config/
   - Method: GET
   - Auth: None
   - Purpose:
       Returns the publishable key so the frontend can initialize Stripe.js.

Author: DSP Development Team
Date: 2025-09-03
"""

import logging

from django.conf import settings
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import NotFoundError, ValidationError
from core.payment_gateways import FLOW_INTENT
from core.payment_gateways.stripe_gateway import StripeIntentGateway, from_minor_units
from elearning.permissions import ensure_owner_or_admin

from ..models import Payment, PaymentEvent
from ..serializers import IntentConfirmSerializer, IntentInitSerializer
from ..services import ConfirmationEvent, RefundProcessor
from ..services.events import already_processed, finish_event, record_event
from .mixins import PaymentServiceMixin

logger = logging.getLogger(__name__)

SUCCESS_EVENTS = ("payment_intent.succeeded", "payment_intent.processing")
FAILURE_EVENTS = ("payment_intent.payment_failed",)
CANCEL_EVENTS = ("payment_intent.canceled",)
REFUND_EVENTS = ("charge.refunded",)


class IntentInitView(PaymentServiceMixin, APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = IntentInitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = self.get_checkout_service().start(
            request.user,
            serializer.validated_data["enrollment_id"],
            serializer.validated_data["method"],
        )
        return Response(
            {
                "client_token": result.initiation.client_token,
                "transaction_ref": result.payment.transaction_ref,
                "payment_id": result.payment.pk,
                "publishable_key": result.publishable_key,
                "amount": str(result.payment.amount),
                "currency": result.payment.currency,
            },
            status=status.HTTP_201_CREATED,
        )


class IntentConfirmView(PaymentServiceMixin, APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = IntentConfirmSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payment = Payment.objects.filter(pk=data["payment_id"]).first()
        if payment is None:
            raise NotFoundError("Payment", data["payment_id"])
        ensure_owner_or_admin(request.user, payment.user_id)
        if payment.transaction_ref != data["transaction_ref"]:
            raise ValidationError("transaction_ref does not belong to this payment")

        result = self.get_reconciler().reconcile(
            ConfirmationEvent(
                transaction_ref=payment.transaction_ref,
                channel=PaymentEvent.Channel.CONFIRM,
                event_type="intent.confirm",
            )
        )
        return self.reconciliation_response(request, result)


class StripeWebhookView(PaymentServiceMixin, APIView):
    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        gateway = self.get_gateway(FLOW_INTENT)
        event = gateway.parse_webhook(
            request.body, request.META.get("HTTP_STRIPE_SIGNATURE", "")
        )
        event_id = event.get("id")
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}

        if event_id and already_processed(event_id):
            logger.info("Stripe event %s already processed", event_id)
            return Response({"received": True, "duplicate": True}, status=status.HTTP_200_OK)

        try:
            outcome = self._dispatch(event_id, event_type, obj)
        except NotFoundError:
            outcome = "not_found"
        return Response({"received": True, "outcome": outcome}, status=status.HTTP_200_OK)

    def _dispatch(self, event_id, event_type, obj) -> str:
        reconciler = self.get_reconciler()
        confirmation = ConfirmationEvent(
            transaction_ref=obj.get("payment_intent") if event_type in REFUND_EVENTS else obj.get("id", ""),
            channel=PaymentEvent.Channel.WEBHOOK,
            event_type=event_type,
            provider_event_id=event_id,
            payload={"id": obj.get("id"), "status": obj.get("status"), "type": event_type},
        )

        if event_type in SUCCESS_EVENTS:
            confirmation.provider_status = StripeIntentGateway.status_from_intent(obj)
            return reconciler.reconcile(confirmation).outcome

        if event_type in FAILURE_EVENTS:
            error = obj.get("last_payment_error") or {}
            return reconciler.record_failure(
                confirmation,
                code=error.get("decline_code") or error.get("code") or "payment_failed",
                message=error.get("message") or "Payment failed",
            ).outcome

        if event_type in CANCEL_EVENTS:
            return reconciler.record_cancellation(confirmation).outcome

        if event_type in REFUND_EVENTS:
            return self._apply_refund(confirmation, obj)

        record = record_event(confirmation, None)
        finish_event(record, "ignored")
        logger.debug("Ignoring Stripe event %s (%s)", event_id, event_type)
        return "ignored"

    def _apply_refund(self, confirmation: ConfirmationEvent, charge) -> str:
        payment = Payment.objects.filter(transaction_ref=confirmation.transaction_ref or "").first()
        record = record_event(confirmation, payment)
        if payment is None:
            finish_event(record, "not_found")
            return "not_found"
        total = from_minor_units(charge.get("amount_refunded"), charge.get("currency") or payment.currency)
        refunds = (charge.get("refunds") or {}).get("data") or []
        outcome = RefundProcessor(gateway_factory=self.get_gateway).apply_provider_refund(
            payment, total or 0, refund_ref=refunds[0].get("id", "") if refunds else ""
        )
        result = "no_change" if outcome is None else ("refunded" if outcome.full else "partially_refunded")
        finish_event(record, result)
        return result


class StripeConfigView(APIView):
    """
    endpoint so the frontend can initialize Stripe.js
    """

    permission_classes = [AllowAny]

    def get(self, request):
        publishable_key = (
            settings.STRIPE_LIVE_PUBLISHABLE_KEY
            if settings.STRIPE_LIVE_MODE
            else settings.STRIPE_TEST_PUBLISHABLE_KEY
        )
        return Response({"publishableKey": publishable_key}, status=status.HTTP_200_OK)
