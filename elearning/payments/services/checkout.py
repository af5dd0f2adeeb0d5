"""
Payment initiation for an existing enrollment.

The provider is called before anything is written, so a rejected or
unreachable gateway leaves no Payment behind. A failed attempt never blocks
a retry: each call creates a new Payment for the same enrollment.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from django.db import transaction

from core.exceptions import AlreadyCompletedError, NotFoundError, ValidationError
from core.payment_gateways import GatewayClient, InitiationResult, build_gateway
from elearning.enrollments.models import Enrollment
from elearning.permissions import ensure_owner_or_admin

from ..models import Payment

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    payment: Payment
    initiation: InitiationResult
    publishable_key: str = ""


class CheckoutService:
    def __init__(self, gateway_factory: Callable[[str], GatewayClient] = build_gateway) -> None:
        self.gateway_factory = gateway_factory

    def start(
        self,
        user,
        enrollment_id,
        method: str,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> CheckoutResult:
        """
        Create a Payment for `enrollment_id` and initiate it with the gateway.

        Raises:
            NotFoundError: unknown enrollment
            AuthorizationError: caller does not own the enrollment
            AlreadyCompletedError: enrollment is already paid for
            ValidationError: enrollment is closed or method has no gateway
            ConfigurationError / GatewayError: from the gateway
        """
        enrollment = (
            Enrollment.objects.select_related("course", "student")
            .filter(pk=enrollment_id)
            .first()
        )
        if enrollment is None:
            raise NotFoundError("Enrollment", enrollment_id)
        ensure_owner_or_admin(user, enrollment.student_id)

        if enrollment.has_access or enrollment.payment_status == Enrollment.PaymentStatus.COMPLETED:
            raise AlreadyCompletedError("Payment already completed for this enrollment")
        if enrollment.is_terminal:
            raise ValidationError(f"Enrollment is {enrollment.status}")
        if method == Payment.Method.CASH:
            raise ValidationError("Cash payments are recorded by an administrator")

        course = enrollment.course
        student = enrollment.student
        metadata = {
            "enrollment_id": enrollment.pk,
            "course_id": course.pk,
            "user_id": student.pk,
            "description": f"Enrollment: {course.title}",
            "product_name": course.title,
            "customer_name": student.get_full_name() or student.get_username(),
            "customer_email": student.email,
            **(extra_metadata or {}),
        }

        gateway = self.gateway_factory(method)
        initiation = gateway.initiate(course.price, course.currency, metadata)

        with transaction.atomic():
            payment = Payment.objects.create(
                user=student,
                enrollment=enrollment,
                course=course,
                amount=course.price,
                currency=course.currency,
                method=method,
                transaction_ref=initiation.transaction_ref,
                metadata={k: v for k, v in initiation.raw.items() if v is not None},
                description=metadata["description"],
                is_test=not gateway.live_mode,
            )
            Enrollment.objects.filter(pk=enrollment.pk, status=Enrollment.Status.PENDING).update(
                payment_amount=payment.amount,
                payment_currency=payment.currency,
                payment_method=payment.method,
                payment_status=Enrollment.PaymentStatus.PENDING,
                payment_transaction_ref=payment.transaction_ref,
            )

        logger.info(
            "Payment %s initiated via %s for enrollment %s",
            payment.transaction_ref,
            method,
            enrollment.pk,
        )
        return CheckoutResult(
            payment=payment,
            initiation=initiation,
            publishable_key=getattr(gateway, "publishable_key", ""),
        )
