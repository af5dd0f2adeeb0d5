"""
Enrollment lifecycle service.

Creation reserves a course seat in the same transaction that inserts the
enrollment. Cancellation closes any open payment attempts and gives the seat
back exactly once, no matter how often it is repeated.
"""

import logging
from typing import Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from elearning.courses.models import Course
from elearning.courses.seat_capacity import SeatCapacityTracker
from elearning.payments.models import Payment
from elearning.payments.state_machine import enrollment_states, payment_states
from elearning.permissions import ensure_admin, ensure_owner_or_admin

from .models import Enrollment

logger = logging.getLogger(__name__)

ES = Enrollment.Status


class EnrollmentService:
    def __init__(self, seat_tracker: Optional[SeatCapacityTracker] = None) -> None:
        self.seat_tracker = seat_tracker or SeatCapacityTracker()

    def get_enrollment(self, enrollment_id, user) -> Enrollment:
        enrollment = (
            Enrollment.objects.select_related("course", "student")
            .filter(pk=enrollment_id)
            .first()
        )
        if enrollment is None:
            raise NotFoundError("Enrollment", enrollment_id)
        ensure_owner_or_admin(user, enrollment.student_id)
        return enrollment

    def create_enrollment(self, student, course_id, payment_method: str = "") -> Enrollment:
        """
        Enroll `student` in a course.

        Free courses are active immediately; paid courses start pending
        until their payment is confirmed.

        Raises:
            NotFoundError: unknown course
            ValidationError: course closed or student already enrolled
            CapacityExceededError: no seats left
        """
        course = Course.objects.filter(pk=course_id).first()
        if course is None:
            raise NotFoundError("Course", course_id)
        if not course.accepts_enrollments:
            raise ValidationError("Course is not open for enrollment")
        if Enrollment.objects.filter(student=student, course=course).exclude(status=ES.CANCELLED).exists():
            raise ValidationError("Already enrolled in this course")

        now = timezone.now()
        fields = {
            "student": student,
            "course": course,
            "payment_amount": course.price,
            "payment_currency": course.currency,
            "payment_method": payment_method,
        }
        if course.is_free:
            fields.update(
                status=ES.ACTIVE,
                start_date=now,
                payment_status=Enrollment.PaymentStatus.COMPLETED,
                payment_date=now,
                payment_method="free",
            )

        try:
            with transaction.atomic():
                self.seat_tracker.reserve(course.pk)
                enrollment = Enrollment.objects.create(**fields)
        except IntegrityError:
            raise ValidationError("Already enrolled in this course")
        course.refresh_from_db(fields=["current_students"])

        logger.info(
            "Enrollment %s created for student %s in course %s (%s)",
            enrollment.pk,
            student.pk,
            course.pk,
            enrollment.status,
        )
        return enrollment

    def cancel_enrollment(self, enrollment_id, actor, reason: str = "") -> Enrollment:
        """
        Cancel a pending or active enrollment.

        Repeated calls on an already cancelled enrollment are no-ops.

        Raises:
            InvalidTransitionError: enrollment is completed or refunded
        """
        enrollment = self.get_enrollment(enrollment_id, actor)
        now = timezone.now()
        with transaction.atomic():
            changed = enrollment_states.compare_and_set(
                enrollment.pk,
                ES.CANCELLED,
                only_from=[ES.PENDING, ES.ACTIVE],
                cancelled_at=now,
                cancellation_reason=reason,
            )
            if changed:
                self._cancel_open_payments(enrollment)

        enrollment.refresh_from_db()
        if not changed and enrollment.status != ES.CANCELLED:
            raise InvalidTransitionError("Enrollment", enrollment.status, ES.CANCELLED)

        self.seat_tracker.release(enrollment)
        return enrollment

    def update_progress(
        self,
        enrollment_id,
        actor,
        completed_lessons: Optional[int] = None,
        total_lessons: Optional[int] = None,
        progress: Optional[int] = None,
    ) -> Enrollment:
        enrollment = self.get_enrollment(enrollment_id, actor)
        if progress is None:
            if completed_lessons is None or total_lessons is None:
                raise ValidationError("Provide progress or completed_lessons and total_lessons")
            progress = Enrollment.calculate_progress(completed_lessons, total_lessons)
        if not 0 <= progress <= 100:
            raise ValidationError("Progress must be between 0 and 100")
        if enrollment.status != ES.ACTIVE:
            raise ValidationError(f"Cannot update progress of a {enrollment.status} enrollment")

        if progress == 100:
            return self._complete(enrollment)

        Enrollment.objects.filter(pk=enrollment.pk, status=ES.ACTIVE).update(
            progress=progress, updated_at=timezone.now()
        )
        enrollment.refresh_from_db()
        return enrollment

    def complete_enrollment(self, enrollment_id, actor) -> Enrollment:
        ensure_admin(actor)
        enrollment = self.get_enrollment(enrollment_id, actor)
        return self._complete(enrollment)

    def _complete(self, enrollment: Enrollment) -> Enrollment:
        if not enrollment_states.compare_and_set(
            enrollment.pk,
            ES.COMPLETED,
            only_from=[ES.ACTIVE],
            progress=100,
            completion_date=timezone.now(),
        ):
            enrollment.refresh_from_db()
            raise InvalidTransitionError("Enrollment", enrollment.status, ES.COMPLETED)
        enrollment.refresh_from_db()
        logger.info("Enrollment %s completed", enrollment.pk)
        return enrollment

    @staticmethod
    def _cancel_open_payments(enrollment: Enrollment) -> None:
        open_payments = Payment.objects.filter(
            enrollment=enrollment,
            status__in=Payment.OPEN_STATUSES,
        ).values_list("pk", flat=True)
        for payment_id in open_payments:
            payment_states.compare_and_set(
                payment_id,
                Payment.Status.CANCELLED,
                only_from=Payment.OPEN_STATUSES,
                failure_code="enrollment_cancelled",
                failure_message="Enrollment was cancelled",
            )
