"""
Seat Capacity Tracker

Keeps `Course.current_students` in step with the enrollment lifecycle:

- `reserve` runs when an enrollment is created and increments the counter
  with a single conditional UPDATE, failing when the course is full.
- `release` runs when an enrollment becomes cancelled or refunded. It first
  claims the enrollment's `seat_released` flag; only the caller that flips
  the flag decrements the counter, so repeated or concurrent cancel calls
  give back the seat once.

Author: DSP Development Team
Version: 1.0.0
"""

import logging

from django.db import transaction
from django.db.models import F, Q

from core.exceptions import CapacityExceededError, NotFoundError
from elearning.enrollments.models import Enrollment

from .models import Course

logger = logging.getLogger(__name__)


class SeatCapacityTracker:
    def reserve(self, course_id) -> None:
        """
        Take one seat of the course.

        Raises:
            NotFoundError: course does not exist
            CapacityExceededError: current_students >= max_students (max 0 = unlimited)
        """
        updated = (
            Course.objects.filter(pk=course_id)
            .filter(Q(max_students=0) | Q(current_students__lt=F("max_students")))
            .update(current_students=F("current_students") + 1)
        )
        if updated:
            logger.debug("Reserved seat in course %s", course_id)
            return

        course = Course.objects.filter(pk=course_id).values("max_students").first()
        if course is None:
            raise NotFoundError("Course", course_id)
        logger.info("Course %s is full (%s seats)", course_id, course["max_students"])
        raise CapacityExceededError(course_id, course["max_students"])

    def release(self, enrollment: Enrollment) -> bool:
        """
        Give back the seat held by a cancelled or refunded enrollment.

        Returns:
            True if this call released the seat, False if it was already
            released (or the enrollment is not in a terminal state).
        """
        with transaction.atomic():
            claimed = Enrollment.objects.filter(
                pk=enrollment.pk,
                seat_released=False,
                status__in=[Enrollment.Status.CANCELLED, Enrollment.Status.REFUNDED],
            ).update(seat_released=True)
            if not claimed:
                logger.debug("Seat of enrollment %s already released", enrollment.pk)
                return False
            Course.objects.filter(pk=enrollment.course_id, current_students__gt=0).update(
                current_students=F("current_students") - 1
            )
        enrollment.seat_released = True
        logger.info("Released seat of enrollment %s in course %s", enrollment.pk, enrollment.course_id)
        return True
