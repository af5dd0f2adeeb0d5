"""
Model-level invariants: net amount, immutable amount/currency, course seats.
"""

from decimal import Decimal

from django.test import TestCase, override_settings

from core.exceptions import ValidationError
from elearning.courses.models import Course
from elearning.enrollments.models import Enrollment
from elearning.enrollments.services import EnrollmentService
from elearning.payments.models import Payment

from .helpers import make_course, make_payment, make_user


class PaymentModelTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.student = make_user()
        cls.course = make_course(price="99.99")
        cls.enrollment = EnrollmentService().create_enrollment(cls.student, cls.course.pk)

    def test_net_amount_computed_on_create(self):
        payment = make_payment(
            self.enrollment, discount_amount=Decimal("10.00"), tax_amount=Decimal("5.50")
        )
        payment.refresh_from_db()
        self.assertEqual(payment.net_amount, Decimal("95.49"))

    def test_net_amount_recomputed_on_partial_save(self):
        payment = make_payment(self.enrollment)
        payment = Payment.objects.get(pk=payment.pk)
        payment.discount_amount = Decimal("20.00")
        payment.save(update_fields=["discount_amount"])
        payment.refresh_from_db()
        self.assertEqual(payment.net_amount, Decimal("79.99"))

    def test_amount_cannot_change_after_creation(self):
        payment = Payment.objects.get(pk=make_payment(self.enrollment).pk)
        payment.amount = Decimal("1.00")
        with self.assertRaises(ValidationError):
            payment.save()

    def test_currency_cannot_change_after_creation(self):
        payment = Payment.objects.get(pk=make_payment(self.enrollment).pk)
        payment.currency = "EUR"
        with self.assertRaises(ValidationError):
            payment.save()

    def test_refundable_amount_only_for_completed(self):
        pending = make_payment(self.enrollment)
        self.assertEqual(pending.refundable_amount, Decimal("0.00"))

        completed = make_payment(
            self.enrollment, status=Payment.Status.COMPLETED, refund_amount=Decimal("50.00")
        )
        self.assertEqual(completed.refundable_amount, Decimal("49.99"))

    def test_only_pending_and_processing_are_open(self):
        open_statuses = {
            status for status in Payment.Status.values
            if make_payment(self.enrollment, status=status).is_open
        }
        self.assertEqual(open_statuses, {Payment.Status.PENDING, Payment.Status.PROCESSING})



class CourseAndEnrollmentModelTests(TestCase):
    def test_available_seats(self):
        limited = make_course(title="Limited", max_students=3, current_students=1)
        unlimited = make_course(title="Unlimited", max_students=0)
        self.assertEqual(limited.available_seats, 2)
        self.assertFalse(limited.is_full)
        self.assertIsNone(unlimited.available_seats)
        self.assertFalse(unlimited.is_full)

    @override_settings(DEFAULT_CURRENCY="usd")
    def test_default_currency_is_upper_case(self):
        course = Course.objects.create(title="No currency", price=Decimal("10.00"))
        self.assertEqual(course.currency, "USD")

    def test_calculate_progress(self):
        self.assertEqual(Enrollment.calculate_progress(3, 4), 75)
        self.assertEqual(Enrollment.calculate_progress(5, 4), 100)
        self.assertEqual(Enrollment.calculate_progress(1, 0), 0)
