"""
Confirmation Reconciler
=======================

Single entry point through which every payment confirmation channel flows:

1. synchronous confirm right after Stripe.js authorization
2. Stripe webhook (at-least-once, any order)
3. SSLCommerz browser callback (unauthenticated)
4. SSLCommerz IPN (server to server, may be the only channel that fires)
5. caller-initiated verify
6. the `reconcile_pending_payments` sweep

Algorithm (per payment, keyed by transaction_ref)
-------------------------------------------------
- completed / refunded        -> ALREADY_COMPLETED, nothing changes
- cancelled                   -> REJECTED, a late success never resurrects it
- ask the provider (retrieve_status, validate + ValidationPolicy, or a
  signature-verified webhook payload)
- failed, provider not paid   -> FAILED, nothing changes
- provider still pending      -> pending -> processing, PENDING
- provider says failed        -> failed with failure_code/message, FAILED
- amount/currency mismatch    -> failed (amount_mismatch), FAILED with
                                 AmountMismatchError attached
- otherwise compare-and-set pending|processing|failed -> completed, then
  pending -> active on the enrollment. Losing the race means another
  channel already did it: ALREADY_COMPLETED.

Failure and cancellation claims from the callback and IPN are checked with
the provider before the payment is closed; an unconfirmed claim leaves it
open.

Failures are recorded on the Payment and returned, never raised. Unknown
transaction references raise NotFoundError; provider outages raise a
retryable GatewayError and leave the payment untouched.

Author: DSP Development Team
Version: 1.0.0
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from django.db import transaction
from django.utils import timezone

from core.exceptions import (
    AmountMismatchError,
    NotFoundError,
    PaymentPlatformException,
    ValidationError,
)
from core.payment_gateways import FLOW_INTENT, GatewayClient, ProviderStatus, build_gateway
from elearning.enrollments.models import Enrollment

from ..models import Payment, PaymentEvent
from ..state_machine import current_status, enrollment_states, payment_states
from .events import ConfirmationEvent, finish_event, record_event
from .validation_policy import ValidationPolicy

logger = logging.getLogger(__name__)

PS = Payment.Status

# Anyone can post to these; their failure or cancellation claims are checked
# with the provider first.
UNAUTHENTICATED_CHANNELS = (PaymentEvent.Channel.CALLBACK, PaymentEvent.Channel.IPN)


class Outcome:
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    PENDING = "pending"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"


@dataclass
class ReconciliationResult:
    outcome: str
    payment: Payment
    enrollment: Optional[Enrollment] = None
    error: Optional[PaymentPlatformException] = None

    @property
    def is_success(self) -> bool:
        return self.outcome in (Outcome.COMPLETED, Outcome.ALREADY_COMPLETED)


@dataclass
class ProviderCheck:
    status: str
    amount: Optional[Decimal] = None
    currency: str = ""
    gateway_transaction_ref: Optional[str] = None
    validation_ref: Optional[str] = None
    failure_code: str = ""
    failure_message: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


class ConfirmationReconciler:
    """
    Idempotently applies confirmation events to Payment and Enrollment.

    Args:
        gateway_factory: Callable returning a GatewayClient for a payment method
        policy: Validation policy for redirect confirmations (default from settings)
    """

    def __init__(
        self,
        gateway_factory: Callable[[str], GatewayClient] = build_gateway,
        policy: Optional[ValidationPolicy] = None,
    ) -> None:
        self.gateway_factory = gateway_factory
        self.policy = policy or ValidationPolicy.from_settings()

    @property
    def tolerance(self) -> Decimal:
        return self.policy.tolerance

    # ---------- entry points ----------

    def reconcile(self, event: ConfirmationEvent) -> ReconciliationResult:
        payment = self._load(event)
        record = record_event(event, payment)
        try:
            result = self._reconcile(payment, event)
        except PaymentPlatformException as e:
            finish_event(record, "error", e.message)
            raise
        finish_event(record, result.outcome, result.error.message if result.error else "")
        return result

    def record_failure(
        self, event: ConfirmationEvent, code: str, message: str
    ) -> ReconciliationResult:
        """Provider reported the attempt as failed."""
        return self._record_closure(event, lambda payment: self._fail(payment, code, message))

    def record_cancellation(self, event: ConfirmationEvent) -> ReconciliationResult:
        """Payer abandoned the attempt at the provider."""
        return self._record_closure(event, self._cancel)

    def confirm_offline(self, payment: Payment) -> ReconciliationResult:
        """Mark a cash payment as received."""
        if payment.method != Payment.Method.CASH:
            raise ValidationError("Only cash payments can be confirmed offline")
        return self._complete(
            payment,
            ProviderCheck(status=ProviderStatus.SUCCEEDED, amount=payment.amount, currency=payment.currency),
        )

    # ---------- internals ----------

    def _load(self, event: ConfirmationEvent) -> Payment:
        payment = (
            Payment.objects.select_related("enrollment")
            .filter(transaction_ref=event.transaction_ref)
            .first()
        )
        if payment is None:
            record = record_event(event, None)
            finish_event(record, Outcome.NOT_FOUND)
            logger.warning(
                "%s event for unknown transaction %s", event.channel, event.transaction_ref
            )
            raise NotFoundError("Payment", event.transaction_ref)
        return payment

    def _reconcile(self, payment: Payment, event: ConfirmationEvent) -> ReconciliationResult:
        if payment.status in (PS.COMPLETED, PS.REFUNDED):
            logger.debug("Payment %s already %s", payment.transaction_ref, payment.status)
            return self._result(Outcome.ALREADY_COMPLETED, payment)
        if payment.status == PS.CANCELLED:
            logger.warning(
                "Ignoring %s event for cancelled payment %s",
                event.channel,
                payment.transaction_ref,
            )
            return self._result(Outcome.REJECTED, payment)

        check = self._check_with_provider(payment, event)

        if payment.status == PS.FAILED and check.status != ProviderStatus.SUCCEEDED:
            return self._result(Outcome.FAILED, payment)
        return self._settle(payment, check)

    def _settle(self, payment: Payment, check: ProviderCheck) -> ReconciliationResult:
        if check.status == ProviderStatus.PENDING:
            payment_states.compare_and_set(payment.pk, PS.PROCESSING, only_from=[PS.PENDING])
            return self._result(Outcome.PENDING, payment)

        if check.status == ProviderStatus.FAILED:
            return self._fail(payment, check.failure_code or "payment_failed", check.failure_message)

        if not self._amount_matches(payment, check):
            error = AmountMismatchError(
                payment.amount, check.amount, payment.currency, check.currency
            )
            logger.error("Payment %s: %s", payment.transaction_ref, error.message)
            return self._fail(payment, "amount_mismatch", error.message, error=error)

        return self._complete(payment, check)

    def _record_closure(
        self, event: ConfirmationEvent, close: Callable[[Payment], ReconciliationResult]
    ) -> ReconciliationResult:
        payment = self._load(event)
        record = record_event(event, payment)
        try:
            result = self._unconfirmed_closure(payment, event) or close(payment)
        except PaymentPlatformException as e:
            finish_event(record, "error", e.message)
            raise
        finish_event(record, result.outcome, result.error.message if result.error else "")
        return result

    def _unconfirmed_closure(
        self, payment: Payment, event: ConfirmationEvent
    ) -> Optional[ReconciliationResult]:
        """
        Check a failure/cancellation claim from an unauthenticated channel.

        Returns None when the claim may be applied: the channel is trusted,
        the payment is no longer open, or the provider reports the attempt as
        failed. Otherwise the provider's answer is applied instead.
        """
        if event.channel not in UNAUTHENTICATED_CHANNELS or not payment.is_open:
            return None
        if payment.method == Payment.Method.CASH:
            logger.warning(
                "Ignoring %s claim for cash payment %s", event.channel, payment.transaction_ref
            )
            return self._result(Outcome.PENDING, payment)
        status = self.gateway_factory(payment.method).retrieve_status(payment.transaction_ref)
        if status.status == ProviderStatus.FAILED:
            return None
        logger.warning(
            "%s claim %s for %s not confirmed by provider (%s)",
            event.channel,
            event.claimed_status or event.event_type,
            payment.transaction_ref,
            status.status,
        )
        if status.status == ProviderStatus.SUCCEEDED:
            return self._settle(payment, self._from_status(status))
        return self._result(Outcome.PENDING, payment)

    def _check_with_provider(self, payment: Payment, event: ConfirmationEvent) -> ProviderCheck:
        if event.provider_status is not None:
            return self._from_status(event.provider_status)

        gateway = self.gateway_factory(payment.method)
        validation_ref = event.validation_ref or payment.validation_ref
        if gateway.flow == FLOW_INTENT or not validation_ref:
            return self._from_status(gateway.retrieve_status(payment.transaction_ref))

        result = gateway.validate(validation_ref)
        if result.transaction_ref and result.transaction_ref != payment.transaction_ref:
            return ProviderCheck(
                status=ProviderStatus.FAILED,
                failure_code="transaction_mismatch",
                failure_message=(
                    f"Validation {validation_ref} belongs to {result.transaction_ref}"
                ),
            )
        decision = self.policy.evaluate(result, payment, event, gateway.live_mode)
        if not decision.accepted:
            return ProviderCheck(
                status=ProviderStatus.FAILED,
                failure_code="validation_failed",
                failure_message=decision.reason,
            )
        metadata = {k: v for k, v in result.raw.items() if v not in (None, "")}
        if decision.lenient:
            metadata["lenient_validation"] = True
        return ProviderCheck(
            status=ProviderStatus.SUCCEEDED,
            amount=decision.amount,
            currency=decision.currency,
            gateway_transaction_ref=result.gateway_transaction_ref,
            validation_ref=validation_ref,
            metadata=metadata,
        )

    @staticmethod
    def _from_status(status) -> ProviderCheck:
        return ProviderCheck(
            status=status.status,
            amount=status.amount,
            currency=status.currency,
            gateway_transaction_ref=status.gateway_transaction_ref,
            validation_ref=status.validation_ref,
            failure_code=status.raw.get("failure_code") or "",
            failure_message=status.error_detail or "",
        )

    def _amount_matches(self, payment: Payment, check: ProviderCheck) -> bool:
        if check.amount is None:
            return False
        if check.currency and check.currency.upper() != payment.currency.upper():
            return False
        return abs(check.amount - payment.amount) <= self.tolerance

    def _fail(
        self,
        payment: Payment,
        code: str,
        message: str,
        error: Optional[PaymentPlatformException] = None,
    ) -> ReconciliationResult:
        if payment_states.compare_and_set(
            payment.pk,
            PS.FAILED,
            only_from=Payment.OPEN_STATUSES,
            failure_code=code[:64],
            failure_message=message,
        ):
            Enrollment.objects.filter(
                pk=payment.enrollment_id, status=Enrollment.Status.PENDING
            ).update(payment_status=Enrollment.PaymentStatus.FAILED, updated_at=timezone.now())
            logger.info("Payment %s failed: %s %s", payment.transaction_ref, code, message)
            return self._result(Outcome.FAILED, payment, error)
        return self._lost_race(payment)

    def _cancel(self, payment: Payment) -> ReconciliationResult:
        if payment_states.compare_and_set(
            payment.pk,
            PS.CANCELLED,
            only_from=Payment.OPEN_STATUSES,
            failure_code="cancelled_by_user",
            failure_message="Payment cancelled at gateway",
        ):
            return self._result(Outcome.CANCELLED, payment)
        return self._lost_race(payment)

    def _complete(self, payment: Payment, check: ProviderCheck) -> ReconciliationResult:
        now = timezone.now()
        metadata = {**(payment.metadata or {}), **check.metadata}
        with transaction.atomic():
            won = payment_states.compare_and_set(
                payment.pk,
                PS.COMPLETED,
                only_from=[PS.PENDING, PS.PROCESSING, PS.FAILED],
                gateway_transaction_ref=check.gateway_transaction_ref or None,
                validation_ref=check.validation_ref or payment.validation_ref,
                payment_date=now,
                failure_code="",
                failure_message="",
                metadata=metadata,
            )
            if not won:
                return self._lost_race(payment)

            activated = enrollment_states.compare_and_set(
                payment.enrollment_id,
                Enrollment.Status.ACTIVE,
                only_from=[Enrollment.Status.PENDING],
                start_date=now,
                payment_status=Enrollment.PaymentStatus.COMPLETED,
                payment_amount=payment.amount,
                payment_currency=payment.currency,
                payment_method=payment.method,
                payment_transaction_ref=payment.transaction_ref,
                payment_date=now,
            )
        if not activated:
            logger.warning(
                "Payment %s completed but enrollment %s was not pending; manual refund may be required",
                payment.transaction_ref,
                payment.enrollment_id,
            )
        logger.info("Payment %s completed", payment.transaction_ref)
        return self._result(Outcome.COMPLETED, payment)

    def _lost_race(self, payment: Payment) -> ReconciliationResult:
        status = current_status(payment)
        if status in (PS.COMPLETED, PS.REFUNDED):
            return self._result(Outcome.ALREADY_COMPLETED, payment)
        return self._result(Outcome.REJECTED, payment)

    @staticmethod
    def _result(outcome: str, payment: Payment, error=None) -> ReconciliationResult:
        payment.refresh_from_db()
        enrollment = Enrollment.objects.select_related("course").get(pk=payment.enrollment_id)
        return ReconciliationResult(outcome, payment, enrollment, error)
