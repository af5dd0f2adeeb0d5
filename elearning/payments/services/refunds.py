"""
Refund Processor

Admin-driven partial and full refunds.

- Only completed payments are refundable, by at most `amount - refund_amount`.
- The amount is claimed against the balance before the provider is called,
  with a conditional UPDATE keyed on the previous total, so two concurrent
  refunds cannot overshoot. A failed provider call gives the claim back.
- A refund reaching the full amount moves Payment and Enrollment to
  `refunded` and gives back the course seat once.

Refunds issued directly in the Stripe dashboard arrive as `charge.refunded`
webhooks and are applied through `apply_provider_refund` without calling the
provider again.
"""

import logging
import secrets
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.exceptions import NotFoundError, RefundExceedsBalanceError, ValidationError
from core.payment_gateways import GatewayClient, build_gateway
from elearning.courses.seat_capacity import SeatCapacityTracker
from elearning.enrollments.models import Enrollment

from ..models import Payment
from ..state_machine import enrollment_states, payment_states

logger = logging.getLogger(__name__)

REASON_MIN_LENGTH = 5
REASON_MAX_LENGTH = 500


@dataclass
class RefundOutcome:
    payment: Payment
    enrollment: Enrollment
    refund_ref: str
    amount: Decimal
    full: bool


class RefundProcessor:
    def __init__(
        self,
        gateway_factory: Callable[[str], GatewayClient] = build_gateway,
        seat_tracker: Optional[SeatCapacityTracker] = None,
    ) -> None:
        self.gateway_factory = gateway_factory
        self.seat_tracker = seat_tracker or SeatCapacityTracker()

    def refund(self, payment_id, amount, reason: str, actor) -> RefundOutcome:
        """
        Refund `amount` of a completed payment.

        Raises:
            ValidationError: non-positive amount, bad reason, payment not completed
            NotFoundError: unknown payment
            RefundExceedsBalanceError: amount above the refundable balance
            GatewayError: provider rejected the refund or is unreachable
        """
        amount = self._parse_amount(amount)
        reason = (reason or "").strip()
        if not REASON_MIN_LENGTH <= len(reason) <= REASON_MAX_LENGTH:
            raise ValidationError(
                f"Refund reason must be between {REASON_MIN_LENGTH} and {REASON_MAX_LENGTH} characters"
            )

        payment = Payment.objects.filter(pk=payment_id).first()
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        if payment.status != Payment.Status.COMPLETED:
            raise ValidationError(
                "Only completed payments can be refunded",
                details={"status": payment.status},
            )
        if amount > payment.refundable_amount:
            raise RefundExceedsBalanceError(amount, payment.refundable_amount)

        self._claim_balance(payment, amount)
        try:
            if payment.method == Payment.Method.CASH:
                refund_ref = f"CASH-REFUND-{secrets.token_hex(6).upper()}"
            else:
                gateway = self.gateway_factory(payment.method)
                result = gateway.refund(
                    payment.transaction_ref,
                    amount,
                    reason=reason,
                    gateway_transaction_ref=payment.gateway_transaction_ref,
                )
                refund_ref = result.refund_ref
        except Exception:
            self._release_balance(payment, amount)
            raise

        return self._apply(payment, amount, reason, actor, refund_ref, claimed=True)

    def apply_provider_refund(self, payment: Payment, total_refunded: Decimal, refund_ref: str = "",
                              reason: str = "Refunded at payment provider") -> Optional[RefundOutcome]:
        """
        Bring the local refund total up to what the provider reports.

        Returns None when the provider total is not ahead of the local one.
        """
        delta = Decimal(total_refunded) - payment.refund_amount
        if delta <= 0 or payment.status != Payment.Status.COMPLETED:
            logger.debug("Provider refund for %s already applied", payment.transaction_ref)
            return None
        delta = min(delta, payment.refundable_amount)
        return self._apply(payment, delta, reason, None, refund_ref)

    # ---------- internals ----------

    @staticmethod
    def _parse_amount(amount) -> Decimal:
        try:
            amount = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise ValidationError("Refund amount must be a number")
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Refund amount must be greater than 0")
        return amount.quantize(Decimal("0.01"))

    def _claim_balance(self, payment: Payment, amount: Decimal, refund_ref: str = "",
                       attempts: int = 3) -> bool:
        """
        Add `amount` to the refund total with a conditional UPDATE keyed on the
        previous total. Returns False when `refund_ref` is already recorded.
        """
        for _ in range(attempts):
            if refund_ref and payment.refund_ref == refund_ref:
                logger.info("Refund %s already recorded for %s", refund_ref, payment.transaction_ref)
                return False
            previous = payment.refund_amount
            if payment.status != Payment.Status.COMPLETED or previous + amount > payment.amount:
                break
            updated = Payment.objects.filter(
                pk=payment.pk,
                status=Payment.Status.COMPLETED,
                refund_amount=previous,
            ).update(refund_amount=previous + amount, updated_at=timezone.now())
            payment.refresh_from_db()
            if updated:
                return True

        logger.warning(
            "Refund of %s for %s exceeds the balance left after a concurrent refund",
            amount,
            payment.transaction_ref,
        )
        raise RefundExceedsBalanceError(amount, payment.refundable_amount)

    @staticmethod
    def _release_balance(payment: Payment, amount: Decimal) -> None:
        Payment.objects.filter(pk=payment.pk, refund_amount__gte=amount).update(
            refund_amount=F("refund_amount") - amount,
            updated_at=timezone.now(),
        )
        payment.refresh_from_db()
        logger.info("Released refund claim of %s for %s", amount, payment.transaction_ref)

    def _apply(self, payment: Payment, amount: Decimal, reason: str, actor, refund_ref: str,
               claimed: bool = False) -> RefundOutcome:
        now = timezone.now()
        if not claimed:
            try:
                claimed = self._claim_balance(payment, amount, refund_ref)
            except RefundExceedsBalanceError:
                logger.critical(
                    "Provider refund %s of %s for %s could not be recorded; balance changed concurrently",
                    refund_ref,
                    amount,
                    payment.transaction_ref,
                )
                raise
        with transaction.atomic():
            if claimed:
                Payment.objects.filter(pk=payment.pk).update(
                    refund_reason=reason,
                    refund_processed_by=actor,
                    refund_processed_at=now,
                    refund_ref=refund_ref,
                    updated_at=now,
                )
                payment.refresh_from_db()
            full = payment.refund_amount >= payment.amount
            enrollment_fields = {
                "refund_amount": payment.refund_amount,
                "refund_date": now,
                "refund_reason": reason,
            }
            if full:
                payment_states.compare_and_set(payment.pk, Payment.Status.REFUNDED,
                                               only_from=[Payment.Status.COMPLETED])
                enrollment_refunded = enrollment_states.compare_and_set(
                    payment.enrollment_id,
                    Enrollment.Status.REFUNDED,
                    only_from=[Enrollment.Status.ACTIVE, Enrollment.Status.COMPLETED],
                    payment_status=Enrollment.PaymentStatus.REFUNDED,
                    **enrollment_fields,
                )
                if not enrollment_refunded:
                    Enrollment.objects.filter(pk=payment.enrollment_id).update(**enrollment_fields)
            else:
                Enrollment.objects.filter(pk=payment.enrollment_id).update(
                    updated_at=now, **enrollment_fields
                )

        enrollment = Enrollment.objects.select_related("course").get(pk=payment.enrollment_id)
        if full and enrollment.status == Enrollment.Status.REFUNDED:
            self.seat_tracker.release(enrollment)

        payment.refresh_from_db()
        logger.info(
            "%s refund of %s %s for %s (%s)",
            "Full" if full else "Partial",
            amount,
            payment.currency,
            payment.transaction_ref,
            refund_ref,
        )
        return RefundOutcome(payment, enrollment, refund_ref, amount, full)
