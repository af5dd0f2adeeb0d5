from django.test import TestCase

from core.exceptions import InvalidTransitionError
from elearning.enrollments.models import Enrollment
from elearning.enrollments.services import EnrollmentService
from elearning.payments.models import Payment
from elearning.payments.state_machine import enrollment_states, payment_states

from .helpers import make_course, make_payment, make_user

PS = Payment.Status
ES = Enrollment.Status


class TransitionTableTests(TestCase):
    def test_payment_transitions(self):
        self.assertTrue(payment_states.can_transition(PS.PENDING, PS.COMPLETED))
        self.assertTrue(payment_states.can_transition(PS.PROCESSING, PS.FAILED))
        self.assertTrue(payment_states.can_transition(PS.COMPLETED, PS.REFUNDED))
        self.assertTrue(payment_states.can_transition(PS.FAILED, PS.COMPLETED))
        self.assertFalse(payment_states.can_transition(PS.FAILED, PS.PENDING))
        self.assertFalse(payment_states.can_transition(PS.CANCELLED, PS.COMPLETED))
        self.assertFalse(payment_states.can_transition(PS.COMPLETED, PS.PENDING))

    def test_enrollment_transitions(self):
        self.assertTrue(enrollment_states.can_transition(ES.PENDING, ES.ACTIVE))
        self.assertTrue(enrollment_states.can_transition(ES.COMPLETED, ES.REFUNDED))
        self.assertFalse(enrollment_states.can_transition(ES.CANCELLED, ES.ACTIVE))
        self.assertFalse(enrollment_states.can_transition(ES.REFUNDED, ES.ACTIVE))
        self.assertFalse(enrollment_states.can_transition(ES.PENDING, ES.REFUNDED))

    def test_terminal_statuses(self):
        for status in (PS.CANCELLED, PS.REFUNDED):
            self.assertTrue(payment_states.is_terminal(status))
        self.assertFalse(payment_states.is_terminal(PS.COMPLETED))
        self.assertFalse(payment_states.is_terminal(PS.FAILED))
        self.assertTrue(enrollment_states.is_terminal(ES.CANCELLED))

    def test_check_raises_for_unlisted_transition(self):
        with self.assertRaises(InvalidTransitionError) as ctx:
            payment_states.check(PS.CANCELLED, PS.COMPLETED)
        self.assertEqual(ctx.exception.status_code, 409)

    def test_only_from_must_be_valid_sources(self):
        with self.assertRaises(InvalidTransitionError):
            payment_states.sources_for(PS.COMPLETED, only_from=[PS.CANCELLED])


class CompareAndSetTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.course = make_course()
        cls.enrollment = EnrollmentService().create_enrollment(make_user(), cls.course.pk)

    def test_first_caller_wins(self):
        payment = make_payment(self.enrollment)
        self.assertTrue(payment_states.compare_and_set(payment.pk, PS.COMPLETED))
        self.assertFalse(payment_states.compare_and_set(payment.pk, PS.COMPLETED))
        payment.refresh_from_db()
        self.assertEqual(payment.status, PS.COMPLETED)

    def test_extra_fields_written_only_on_success(self):
        payment = make_payment(self.enrollment, status=PS.CANCELLED)
        changed = payment_states.compare_and_set(payment.pk, PS.COMPLETED, failure_code="should_not_stick")
        self.assertFalse(changed)
        payment.refresh_from_db()
        self.assertEqual(payment.status, PS.CANCELLED)
        self.assertEqual(payment.failure_code, "")

    def test_only_from_narrows_sources(self):
        payment = make_payment(self.enrollment, status=PS.PROCESSING)
        self.assertFalse(payment_states.compare_and_set(payment.pk, PS.COMPLETED, only_from=[PS.PENDING]))
        self.assertTrue(payment_states.compare_and_set(payment.pk, PS.COMPLETED, only_from=[PS.PROCESSING]))
