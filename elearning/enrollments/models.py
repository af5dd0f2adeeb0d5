"""
E-Learning Enrollment Models

Models:
- Enrollment: One (student, course) relationship with an embedded
  projection of its payment state

Lifecycle:
    pending -> active -> completed
    pending | active -> cancelled
    active | completed -> refunded

Enrollments are never deleted; they leave the system through the
`cancelled` or `refunded` states. At most one non-cancelled enrollment may
exist per (student, course).

Author: DSP Development Team
Version: 1.0.0
"""

from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator
from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _

from elearning.courses.models import Course

__all__ = ["Enrollment"]


class Enrollment(models.Model):
    """
    A student's enrollment in a course.

    The `payment_*` and `refund_*` fields mirror the state of the payment
    that activated the enrollment so that listings do not need to join the
    payments table.

    Attributes:
        student: Enrolled user
        course: Course the student enrolled in
        status: Lifecycle status (see Status)
        seat_released: Set once the course seat held by this enrollment has
            been given back; guards against double release
    """

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        ACTIVE = "active", _("Active")
        COMPLETED = "completed", _("Completed")
        CANCELLED = "cancelled", _("Cancelled")
        REFUNDED = "refunded", _("Refunded")

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", _("Pending")
        COMPLETED = "completed", _("Completed")
        FAILED = "failed", _("Failed")
        REFUNDED = "refunded", _("Refunded")

    student = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="enrollments",
        verbose_name=_("Student"),
    )

    course = models.ForeignKey(
        Course,
        on_delete=models.PROTECT,
        related_name="enrollments",
        verbose_name=_("Course"),
    )

    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        verbose_name=_("Status"),
    )

    # --- payment projection ---
    payment_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    payment_currency = models.CharField(max_length=3, blank=True)
    payment_method = models.CharField(max_length=32, blank=True)
    payment_status = models.CharField(
        max_length=16,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    payment_transaction_ref = models.CharField(max_length=255, blank=True)
    payment_date = models.DateTimeField(null=True, blank=True)
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    refund_date = models.DateTimeField(null=True, blank=True)
    refund_reason = models.TextField(blank=True)

    # --- learning progress ---
    progress = models.PositiveSmallIntegerField(
        default=0,
        validators=[MaxValueValidator(100)],
        verbose_name=_("Progress (%)"),
    )
    enrollment_date = models.DateTimeField(auto_now_add=True)
    start_date = models.DateTimeField(null=True, blank=True)
    completion_date = models.DateTimeField(null=True, blank=True)

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True)
    seat_released = models.BooleanField(default=False)

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Enrollment")
        verbose_name_plural = _("Enrollments")
        ordering = ["-enrollment_date"]
        db_table = "elearning_enrollment"
        constraints = [
            models.UniqueConstraint(
                fields=["student", "course"],
                condition=~Q(status="cancelled"),
                name="unique_open_enrollment_per_student_course",
            ),
            models.CheckConstraint(
                condition=Q(progress__lte=100),
                name="enrollment_progress_max_100",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.student} - {self.course} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in (self.Status.CANCELLED, self.Status.REFUNDED)

    @property
    def has_access(self) -> bool:
        return self.status in (self.Status.ACTIVE, self.Status.COMPLETED)

    @staticmethod
    def calculate_progress(completed_lessons: int, total_lessons: int) -> int:
        if total_lessons <= 0:
            return 0
        completed_lessons = min(max(completed_lessons, 0), total_lessons)
        return round(completed_lessons * 100 / total_lessons)
