from django.test import TestCase

from core.exceptions import CapacityExceededError, NotFoundError
from elearning.courses.seat_capacity import SeatCapacityTracker
from elearning.enrollments.models import Enrollment

from .helpers import make_course, make_user, seats


class SeatCapacityTrackerTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.student = make_user()

    def setUp(self):
        self.tracker = SeatCapacityTracker()

    def test_reserve_increments_counter(self):
        course = make_course(max_students=2)
        self.tracker.reserve(course.pk)
        self.assertEqual(seats(course), 1)

    def test_reserve_full_course_raises(self):
        course = make_course(max_students=1, current_students=1)
        with self.assertRaises(CapacityExceededError) as ctx:
            self.tracker.reserve(course.pk)
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(seats(course), 1)

    def test_unlimited_course_never_full(self):
        course = make_course(max_students=0, current_students=500)
        self.tracker.reserve(course.pk)
        self.assertEqual(seats(course), 501)

    def test_reserve_unknown_course(self):
        with self.assertRaises(NotFoundError):
            self.tracker.reserve(999999)

    def test_release_only_once(self):
        course = make_course(max_students=5, current_students=1)
        enrollment = Enrollment.objects.create(
            student=self.student, course=course, status=Enrollment.Status.CANCELLED
        )
        stale = Enrollment.objects.get(pk=enrollment.pk)

        self.assertTrue(self.tracker.release(enrollment))
        self.assertFalse(self.tracker.release(stale))
        self.assertFalse(self.tracker.release(enrollment))
        self.assertEqual(seats(course), 0)

    def test_release_requires_terminal_status(self):
        course = make_course(current_students=1)
        enrollment = Enrollment.objects.create(student=self.student, course=course)
        self.assertFalse(self.tracker.release(enrollment))
        self.assertEqual(seats(course), 1)

    def test_counter_never_negative(self):
        course = make_course(current_students=0)
        enrollment = Enrollment.objects.create(
            student=self.student, course=course, status=Enrollment.Status.REFUNDED
        )
        self.assertTrue(self.tracker.release(enrollment))
        self.assertEqual(seats(course), 0)
