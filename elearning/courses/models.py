"""
E-Learning Course Models

Defines the purchasable course together with its seat counter.

Models:
- Course: A paid or free course with optional seat capacity

The seat counter (`current_students`) is never written with a
read-modify-write from Python; see `elearning.courses.seat_capacity`.

Author: DSP Development Team
Version: 1.0.0
"""

from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils.translation import gettext_lazy as _

__all__ = ["Course", "default_currency"]


def default_currency() -> str:
    return settings.DEFAULT_CURRENCY.upper()


class Course(models.Model):
    """
    A course students can enroll in.

    Attributes:
        title: Course title
        price: Enrollment price, 0 for free courses
        currency: ISO currency code of `price`
        max_students: Seat capacity, 0 means unlimited
        current_students: Seats currently held by enrollments

    Example:
        >>> course = Course.objects.create(title="Python Basics", price=Decimal("99.99"))
        >>> course.is_free
        False
    """

    title = models.CharField(
        max_length=200,
        verbose_name=_("Course Title"),
    )

    description = models.TextField(
        blank=True,
        verbose_name=_("Description"),
    )

    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0.00"))],
        verbose_name=_("Price"),
    )

    currency = models.CharField(
        max_length=3,
        default=default_currency,
        verbose_name=_("Currency"),
    )

    max_students = models.PositiveIntegerField(
        default=0,
        verbose_name=_("Max Students"),
        help_text=_("Seat capacity; 0 means unlimited"),
    )

    current_students = models.PositiveIntegerField(
        default=0,
        verbose_name=_("Current Students"),
    )

    is_published = models.BooleanField(default=False, verbose_name=_("Published"))
    is_active = models.BooleanField(default=True, verbose_name=_("Active"))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Course")
        verbose_name_plural = _("Courses")
        ordering = ["title"]
        db_table = "elearning_course"

    def __str__(self) -> str:
        return self.title

    @property
    def is_free(self) -> bool:
        return self.price <= 0

    @property
    def is_full(self) -> bool:
        return self.max_students > 0 and self.current_students >= self.max_students

    @property
    def available_seats(self):
        """Remaining seats, or None for unlimited courses."""
        if self.max_students == 0:
            return None
        return max(self.max_students - self.current_students, 0)

    @property
    def enrollment_percentage(self) -> int:
        if self.max_students == 0:
            return 0
        return round(self.current_students * 100 / self.max_students)

    @property
    def accepts_enrollments(self) -> bool:
        return self.is_published and self.is_active
