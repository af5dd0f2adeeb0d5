"""
Redirect-based Payment Views (SSLCommerz)
=========================================

Endpoints
---------

1. RedirectInitView        POST /api/elearning/payments/redirect/init/
   Creates a pending Payment and an SSLCommerz session, returns the hosted
   page URL.

2. RedirectCallbackView    POST /api/elearning/payments/redirect/callback/<success|fail|cancel>/
   Browser returns from the hosted page. Unauthenticated; correlation is
   via tran_id / val_id only. Reconciles, then redirects the browser to
   FRONTEND_URL/payment/redirect/<state>.

3. RedirectIPNView         POST /api/elearning/payments/redirect/ipn/
   Server-to-server notification. Same reconciliation; 200 on any outcome,
   400 on malformed input, 503 while SSLCommerz cannot be reached.

4. RedirectVerifyView      POST /api/elearning/payments/redirect/verify/
   Frontend poll after the redirect. Idempotent; returns Payment + Enrollment.

5. RedirectQueryView       POST /api/elearning/payments/redirect/query/
   Admin only. Returns SSLCommerz's own records for a tran_id.

Author: DSP Development Team
Version: 1.0.0
"""

import logging

from django.http import HttpResponseRedirect
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import GatewayError, NotFoundError
from core.payment_gateways import FLOW_REDIRECT
from elearning.permissions import IsAdmin, ensure_owner_or_admin

from ..models import Payment, PaymentEvent
from ..serializers import (
    RedirectInitSerializer,
    RedirectNotificationSerializer,
    RedirectQuerySerializer,
    RedirectVerifySerializer,
)
from ..services import ConfirmationEvent, Outcome
from .mixins import PaymentServiceMixin, frontend_status_url

logger = logging.getLogger(__name__)

FAILED_STATUSES = ("FAILED", "UNATTEMPTED", "EXPIRED")
CANCELLED_STATUSES = ("CANCELLED",)

FRONTEND_STATE_BY_OUTCOME = {
    Outcome.COMPLETED: "success",
    Outcome.ALREADY_COMPLETED: "success",
    Outcome.PENDING: "pending",
    Outcome.FAILED: "failed",
    Outcome.REJECTED: "failed",
    Outcome.CANCELLED: "cancelled",
}


def notification_event(serializer, channel: str, event_type: str) -> ConfirmationEvent:
    data = serializer.validated_data
    return ConfirmationEvent(
        transaction_ref=data["tran_id"],
        channel=channel,
        validation_ref=data.get("val_id") or None,
        claimed_status=data.get("status") or None,
        claimed_amount=serializer.claimed_amount,
        claimed_currency=serializer.claimed_currency,
        event_type=event_type,
        payload={k: str(v) for k, v in data.items() if v not in (None, "")},
    )


class RedirectInitView(PaymentServiceMixin, APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = RedirectInitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        enrollment_id = data.pop("enrollment_id")
        result = self.get_checkout_service().start(
            request.user, enrollment_id, Payment.Method.REDIRECT_GATEWAY, extra_metadata=data
        )
        return Response(
            {
                "gateway_url": result.initiation.redirect_url,
                "transaction_ref": result.payment.transaction_ref,
                "payment_id": result.payment.pk,
            },
            status=status.HTTP_201_CREATED,
        )


class RedirectCallbackView(PaymentServiceMixin, APIView):
    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request, state):
        serializer = RedirectNotificationSerializer(data=request.data)
        if not serializer.is_valid():
            logger.warning("Malformed SSLCommerz %s callback: %s", state, serializer.errors)
            return HttpResponseRedirect(frontend_status_url("failed", error="invalid_callback"))

        event = notification_event(serializer, PaymentEvent.Channel.CALLBACK, f"callback.{state}")
        reconciler = self.get_reconciler()
        try:
            if state == "success":
                result = reconciler.reconcile(event)
            elif state == "cancel":
                result = reconciler.record_cancellation(event)
            else:
                result = reconciler.record_failure(
                    event,
                    code="gateway_failed",
                    message=serializer.validated_data.get("error") or "Payment failed at gateway",
                )
        except NotFoundError:
            return HttpResponseRedirect(
                frontend_status_url("failed", event.transaction_ref, error="unknown_transaction")
            )
        except GatewayError as e:
            # IPN or verify will settle it once the provider answers again.
            logger.warning("Callback for %s left pending: %s", event.transaction_ref, e.message)
            return HttpResponseRedirect(frontend_status_url("pending", event.transaction_ref))

        frontend_state = FRONTEND_STATE_BY_OUTCOME.get(result.outcome, "failed")
        error = result.payment.failure_code if frontend_state == "failed" else ""
        return HttpResponseRedirect(frontend_status_url(frontend_state, event.transaction_ref, error))


class RedirectIPNView(PaymentServiceMixin, APIView):
    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = RedirectNotificationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        event = notification_event(serializer, PaymentEvent.Channel.IPN, "ipn")
        claimed = (event.claimed_status or "").upper()
        reconciler = self.get_reconciler()

        try:
            if claimed in CANCELLED_STATUSES:
                result = reconciler.record_cancellation(event)
            elif claimed in FAILED_STATUSES:
                result = reconciler.record_failure(
                    event,
                    code=f"gateway_{claimed.lower()}",
                    message=serializer.validated_data.get("error") or f"Gateway reported {claimed}",
                )
            else:
                result = reconciler.reconcile(event)
        except NotFoundError:
            return Response(
                {"received": True, "outcome": Outcome.NOT_FOUND}, status=status.HTTP_200_OK
            )
        return Response({"received": True, "outcome": result.outcome}, status=status.HTTP_200_OK)


class RedirectVerifyView(PaymentServiceMixin, APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = RedirectVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payment = Payment.objects.filter(transaction_ref=data["transaction_ref"]).first()
        if payment is None:
            raise NotFoundError("Payment", data["transaction_ref"])
        ensure_owner_or_admin(request.user, payment.user_id)

        result = self.get_reconciler().reconcile(
            ConfirmationEvent(
                transaction_ref=payment.transaction_ref,
                channel=PaymentEvent.Channel.VERIFY,
                validation_ref=data.get("validation_ref") or None,
                event_type="verify",
            )
        )
        return self.reconciliation_response(request, result)


class RedirectQueryView(PaymentServiceMixin, APIView):
    permission_classes = [IsAdmin]

    def post(self, request):
        serializer = RedirectQuerySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        transaction_ref = serializer.validated_data["transaction_ref"]
        elements = self.get_gateway(FLOW_REDIRECT).query_transaction(transaction_ref)
        return Response(
            {"transaction_ref": transaction_ref, "count": len(elements), "elements": elements},
            status=status.HTTP_200_OK,
        )
