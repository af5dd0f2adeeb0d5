"""
Shared fixtures for the payment and enrollment tests.

`FakeGateway` is an in-memory GatewayClient. Tests script provider answers
through its dictionaries and inspect `calls` afterwards.
"""

import uuid
from decimal import Decimal

from django.contrib.auth.models import User

from core.exceptions import WebhookSignatureError
from core.payment_gateways import (
    FLOW_INTENT,
    FLOW_REDIRECT,
    GatewayClient,
    InitiationResult,
    ProviderStatus,
    RefundResult,
    StatusResult,
    ValidationResult,
)
from elearning.courses.models import Course
from elearning.payments.models import Payment


class FakeGateway(GatewayClient):
    name = "fake"

    def __init__(self, flow=FLOW_INTENT, live_mode=False):
        self.flow = flow
        self.live_mode = live_mode
        self.publishable_key = "pk_test_fake"
        self.statuses = {}
        self.validations = {}
        self.webhook_events = {}
        self.error = None
        self.calls = []

    def _record(self, *call):
        self.calls.append(call)
        if self.error is not None:
            raise self.error

    def initiate(self, amount, currency, metadata):
        self._record("initiate", amount, currency, metadata)
        prefix = "pi" if self.flow == FLOW_INTENT else "TXN"
        ref = f"{prefix}_{uuid.uuid4().hex[:16]}"
        return InitiationResult(
            transaction_ref=ref,
            client_token=f"{ref}_secret" if self.flow == FLOW_INTENT else None,
            redirect_url=f"https://sandbox.example/pay/{ref}" if self.flow == FLOW_REDIRECT else None,
            raw={"status": "requires_payment_method"},
        )

    def retrieve_status(self, transaction_ref):
        self._record("retrieve_status", transaction_ref)
        return self.statuses.get(transaction_ref, StatusResult(status=ProviderStatus.PENDING))

    def validate(self, validation_ref):
        self._record("validate", validation_ref)
        return self.validations.get(
            validation_ref, ValidationResult(valid=False, raw_status="INVALID_TRANSACTION", ambiguous=True)
        )

    def refund(self, transaction_ref, amount, reason="", gateway_transaction_ref=None):
        self._record("refund", transaction_ref, amount, reason, gateway_transaction_ref)
        return RefundResult(refund_ref=f"re_{uuid.uuid4().hex[:12]}")

    def query_transaction(self, transaction_ref):
        self._record("query_transaction", transaction_ref)
        return [{"tran_id": transaction_ref, "status": "VALID"}]

    def parse_webhook(self, payload, signature):
        if signature not in self.webhook_events:
            raise WebhookSignatureError("Invalid Stripe signature")
        return self.webhook_events[signature]

    # scripting helpers

    def succeed(self, transaction_ref, amount, currency="USD", charge="ch_test"):
        self.statuses[transaction_ref] = StatusResult(
            status=ProviderStatus.SUCCEEDED,
            amount=Decimal(amount),
            currency=currency,
            gateway_transaction_ref=charge,
            validation_ref=transaction_ref,
        )

    def decline(self, transaction_ref, code="card_declined", message="Your card was declined."):
        self.statuses[transaction_ref] = StatusResult(
            status=ProviderStatus.FAILED, error_detail=message, raw={"failure_code": code}
        )

    def valid(self, validation_ref, transaction_ref, amount, currency="USD", bank_tran_id="BANK1"):
        self.validations[validation_ref] = ValidationResult(
            valid=True,
            amount=Decimal(amount),
            currency=currency,
            raw_status="VALID",
            transaction_ref=transaction_ref,
            gateway_transaction_ref=bank_tran_id,
            raw={"card_type": "VISA-Dutch Bangla", "val_id": validation_ref},
        )

    def factory(self, method):
        return self


def make_user(username="student", **extra):
    return User.objects.create_user(username=username, password="Musterpassword", **extra)


def make_admin(username="admin"):
    return User.objects.create_user(username=username, password="Musterpassword", is_staff=True)


def make_course(title="Python Basics", price="99.99", max_students=0, currency="USD", **extra):
    fields = {"is_published": True, "is_active": True, **extra}
    return Course.objects.create(
        title=title, price=Decimal(price), currency=currency, max_students=max_students, **fields
    )


def make_payment(enrollment, method=FLOW_INTENT, transaction_ref=None, status=Payment.Status.PENDING, **extra):
    course = enrollment.course
    return Payment.objects.create(
        user=enrollment.student,
        enrollment=enrollment,
        course=course,
        amount=extra.pop("amount", course.price),
        currency=extra.pop("currency", course.currency),
        method=method,
        status=status,
        transaction_ref=transaction_ref or f"ref_{uuid.uuid4().hex[:16]}",
        **extra,
    )


def reload(instance):
    instance.refresh_from_db()
    return instance


def seats(course):
    return Course.objects.values_list("current_students", flat=True).get(pk=course.pk)
