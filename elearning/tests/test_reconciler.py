"""
Confirmation reconciler: every channel, duplicates, races and the
validation policy, driven through an in-memory gateway.
"""

from decimal import Decimal
from unittest import mock

from django.test import TestCase, override_settings

from core.exceptions import (
    AmountMismatchError,
    ConfigurationError,
    GatewayError,
    NotFoundError,
    ValidationError,
)
from core.payment_gateways import FLOW_INTENT, FLOW_REDIRECT
from elearning.enrollments.models import Enrollment
from elearning.enrollments.services import EnrollmentService
from elearning.payments.models import Payment, PaymentEvent
from elearning.payments.services import (
    LENIENT,
    ConfirmationEvent,
    ConfirmationReconciler,
    Outcome,
    ValidationPolicy,
)
from elearning.payments.state_machine import enrollment_states

from .helpers import FakeGateway, make_course, make_payment, make_user, reload, seats

PS = Payment.Status
ES = Enrollment.Status
Channel = PaymentEvent.Channel


class IntentConfirmationTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.student = make_user()
        cls.course = make_course(price="99.99", max_students=30)

    def setUp(self):
        self.enrollment = EnrollmentService().create_enrollment(self.student, self.course.pk)
        self.payment = make_payment(self.enrollment, transaction_ref="pi_A")
        self.gateway = FakeGateway(FLOW_INTENT)
        self.reconciler = ConfirmationReconciler(gateway_factory=self.gateway.factory, policy=ValidationPolicy())

    def confirm(self, channel=Channel.CONFIRM, **kwargs):
        return self.reconciler.reconcile(ConfirmationEvent(transaction_ref="pi_A", channel=channel, **kwargs))

    def test_confirm_completes_payment_and_activates_enrollment(self):
        self.gateway.succeed("pi_A", "99.99", charge="ch_A")

        result = self.confirm()

        self.assertEqual(result.outcome, Outcome.COMPLETED)
        self.assertTrue(result.is_success)
        payment = reload(self.payment)
        self.assertEqual(payment.status, PS.COMPLETED)
        self.assertEqual(payment.gateway_transaction_ref, "ch_A")
        self.assertIsNotNone(payment.payment_date)
        enrollment = reload(self.enrollment)
        self.assertEqual(enrollment.status, ES.ACTIVE)
        self.assertEqual(enrollment.payment_status, Enrollment.PaymentStatus.COMPLETED)
        self.assertEqual(enrollment.payment_transaction_ref, "pi_A")
        self.assertEqual(seats(self.course), 1)

    def test_duplicate_confirm_is_a_no_op(self):
        self.gateway.succeed("pi_A", "99.99")
        self.confirm()
        paid_at = reload(self.payment).payment_date

        again = self.confirm(channel=Channel.VERIFY)

        self.assertEqual(again.outcome, Outcome.ALREADY_COMPLETED)
        self.assertTrue(again.is_success)
        self.assertEqual(reload(self.payment).payment_date, paid_at)
        self.assertEqual(len([c for c in self.gateway.calls if c[0] == "retrieve_status"]), 1)
        self.assertEqual(PaymentEvent.objects.filter(transaction_ref="pi_A").count(), 2)
        self.assertEqual(seats(self.course), 1)

    def test_concurrent_webhook_deliveries_complete_once(self):
        self.gateway.succeed("pi_A", "99.99", charge="ch_B")
        provider_status = self.gateway.statuses["pi_A"]
        stale = Payment.objects.get(pk=self.payment.pk)

        first = self.confirm(
            channel=Channel.WEBHOOK, provider_status=provider_status, provider_event_id="evt_1"
        )
        paid_at = reload(self.payment).payment_date
        # Second delivery read the payment while it was still pending.
        with mock.patch.object(self.reconciler, "_load", return_value=stale):
            second = self.confirm(
                channel=Channel.WEBHOOK, provider_status=provider_status, provider_event_id="evt_1"
            )

        self.assertEqual(first.outcome, Outcome.COMPLETED)
        self.assertEqual(second.outcome, Outcome.ALREADY_COMPLETED)
        self.assertEqual(reload(self.payment).payment_date, paid_at)
        self.assertEqual(reload(self.enrollment).status, ES.ACTIVE)
        self.assertEqual(PaymentEvent.objects.filter(provider_event_id="evt_1").count(), 1)
        self.assertEqual(self.gateway.calls, [])

    def test_all_channels_converge_on_one_completion(self):
        self.gateway.succeed("pi_A", "99.99")
        outcomes = [
            self.confirm(channel=channel).outcome
            for channel in (Channel.WEBHOOK, Channel.CONFIRM, Channel.VERIFY, Channel.SWEEP, Channel.WEBHOOK)
        ]
        self.assertEqual(outcomes.count(Outcome.COMPLETED), 1)
        self.assertEqual(outcomes.count(Outcome.ALREADY_COMPLETED), 4)
        self.assertEqual(reload(self.enrollment).status, ES.ACTIVE)
        self.assertEqual(seats(self.course), 1)

    def test_provider_pending_moves_to_processing(self):
        result = self.confirm()
        self.assertEqual(result.outcome, Outcome.PENDING)
        self.assertEqual(reload(self.payment).status, PS.PROCESSING)
        self.assertEqual(reload(self.enrollment).status, ES.PENDING)

        self.gateway.succeed("pi_A", "99.99")
        self.assertEqual(self.confirm().outcome, Outcome.COMPLETED)

    def test_success_after_decline_completes_the_retried_intent(self):
        self.gateway.decline("pi_A")
        result = self.confirm()
        self.assertEqual(result.outcome, Outcome.FAILED)
        payment = reload(self.payment)
        self.assertEqual(payment.status, PS.FAILED)
        self.assertEqual(payment.failure_code, "card_declined")
        self.assertEqual(reload(self.enrollment).payment_status, Enrollment.PaymentStatus.FAILED)

        # The same PaymentIntent is confirmed again with another card.
        self.gateway.succeed("pi_A", "99.99", charge="ch_retry")
        retried = self.confirm(channel=Channel.WEBHOOK)

        self.assertEqual(retried.outcome, Outcome.COMPLETED)
        payment = reload(self.payment)
        self.assertEqual(payment.status, PS.COMPLETED)
        self.assertEqual(payment.gateway_transaction_ref, "ch_retry")
        self.assertEqual(payment.failure_code, "")
        enrollment = reload(self.enrollment)
        self.assertEqual(enrollment.status, ES.ACTIVE)
        self.assertEqual(enrollment.payment_status, Enrollment.PaymentStatus.COMPLETED)
        self.assertEqual(seats(self.course), 1)

    def test_failed_payment_stays_failed_while_provider_has_no_success(self):
        self.gateway.decline("pi_A")
        self.confirm()

        again = self.confirm(channel=Channel.VERIFY)

        self.assertEqual(again.outcome, Outcome.FAILED)
        self.assertEqual(reload(self.payment).status, PS.FAILED)
        self.assertEqual(reload(self.enrollment).status, ES.PENDING)

    def test_failed_payment_with_wrong_amount_is_not_completed(self):
        self.gateway.decline("pi_A")
        self.confirm()
        self.gateway.succeed("pi_A", "9.99")

        result = self.confirm(channel=Channel.WEBHOOK)

        self.assertFalse(result.is_success)
        self.assertEqual(reload(self.payment).status, PS.FAILED)
        self.assertEqual(reload(self.enrollment).status, ES.PENDING)

    def test_amount_mismatch_fails_payment(self):
        self.gateway.succeed("pi_A", "9.99")
        result = self.confirm()
        self.assertEqual(result.outcome, Outcome.FAILED)
        self.assertIsInstance(result.error, AmountMismatchError)
        self.assertEqual(reload(self.payment).failure_code, "amount_mismatch")
        self.assertEqual(reload(self.enrollment).status, ES.PENDING)

    def test_late_success_after_enrollment_cancelled(self):
        EnrollmentService().cancel_enrollment(self.enrollment.pk, self.student)
        self.gateway.succeed("pi_A", "99.99")

        result = self.confirm(channel=Channel.WEBHOOK)

        self.assertEqual(result.outcome, Outcome.REJECTED)
        self.assertEqual(reload(self.payment).status, PS.CANCELLED)
        self.assertEqual(reload(self.enrollment).status, ES.CANCELLED)
        self.assertEqual(seats(self.course), 0)

    def test_completion_never_reactivates_cancelled_enrollment(self):
        enrollment_states.compare_and_set(self.enrollment.pk, ES.CANCELLED)
        self.gateway.succeed("pi_A", "99.99")

        result = self.confirm()

        self.assertEqual(result.outcome, Outcome.COMPLETED)
        self.assertEqual(reload(self.enrollment).status, ES.CANCELLED)

    def test_late_event_after_refund(self):
        self.gateway.succeed("pi_A", "99.99")
        self.confirm()
        Payment.objects.filter(pk=self.payment.pk).update(status=PS.REFUNDED)
        enrollment_states.compare_and_set(self.enrollment.pk, ES.REFUNDED)

        result = self.confirm(channel=Channel.WEBHOOK)

        self.assertEqual(result.outcome, Outcome.ALREADY_COMPLETED)
        self.assertEqual(reload(self.enrollment).status, ES.REFUNDED)

    def test_cancellation_then_success(self):
        cancelled = self.reconciler.record_cancellation(
            ConfirmationEvent(transaction_ref="pi_A", channel=Channel.WEBHOOK)
        )
        self.assertEqual(cancelled.outcome, Outcome.CANCELLED)
        self.assertEqual(reload(self.payment).failure_code, "cancelled_by_user")

        self.gateway.succeed("pi_A", "99.99")
        self.assertEqual(self.confirm().outcome, Outcome.REJECTED)

    def test_unknown_transaction_is_logged_and_raised(self):
        with self.assertRaises(NotFoundError):
            self.reconciler.reconcile(ConfirmationEvent(transaction_ref="pi_missing", channel=Channel.IPN))
        event = PaymentEvent.objects.get(transaction_ref="pi_missing")
        self.assertEqual(event.outcome, Outcome.NOT_FOUND)
        self.assertIsNone(event.payment)

    def test_gateway_outage_leaves_payment_untouched(self):
        self.gateway.error = GatewayError("Stripe is unreachable", GatewayError.KIND_CONNECTION, "fake")
        with self.assertRaises(GatewayError) as ctx:
            self.confirm()
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(reload(self.payment).status, PS.PENDING)
        self.assertEqual(PaymentEvent.objects.get(transaction_ref="pi_A").outcome, "error")


class RedirectConfirmationTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.student = make_user()
        cls.course = make_course(price="299.00", currency="USD")

    def setUp(self):
        self.enrollment = EnrollmentService().create_enrollment(self.student, self.course.pk)
        self.payment = make_payment(self.enrollment, method=FLOW_REDIRECT, transaction_ref="TXN-C")
        self.gateway = FakeGateway(FLOW_REDIRECT)

    def callback(self, policy=None, validation_ref="VAL-C", claimed_amount="299.00", gateway=None):
        reconciler = ConfirmationReconciler(
            gateway_factory=(gateway or self.gateway).factory, policy=policy or ValidationPolicy()
        )
        return reconciler.reconcile(
            ConfirmationEvent(
                transaction_ref="TXN-C",
                channel=Channel.CALLBACK,
                validation_ref=validation_ref,
                claimed_status="VALID",
                claimed_amount=Decimal(claimed_amount),
                claimed_currency="USD",
            )
        )

    def test_validated_callback_completes(self):
        self.gateway.valid("VAL-C", "TXN-C", "299.00", bank_tran_id="BANK-C")
        result = self.callback()
        self.assertEqual(result.outcome, Outcome.COMPLETED)
        payment = reload(self.payment)
        self.assertEqual(payment.validation_ref, "VAL-C")
        self.assertEqual(payment.gateway_transaction_ref, "BANK-C")
        self.assertEqual(payment.metadata["card_type"], "VISA-Dutch Bangla")
        self.assertEqual(reload(self.enrollment).status, ES.ACTIVE)

    def test_callback_amount_mismatch(self):
        self.gateway.valid("VAL-C", "TXN-C", "199.00")

        result = self.callback(claimed_amount="199.00")

        self.assertEqual(result.outcome, Outcome.FAILED)
        self.assertIsInstance(result.error, AmountMismatchError)
        self.assertEqual(result.error.status_code, 409)
        self.assertEqual(reload(self.payment).status, PS.FAILED)
        enrollment = reload(self.enrollment)
        self.assertEqual(enrollment.status, ES.PENDING)
        self.assertEqual(enrollment.payment_status, Enrollment.PaymentStatus.FAILED)

    def test_currency_mismatch(self):
        self.gateway.valid("VAL-C", "TXN-C", "299.00", currency="BDT")
        self.assertEqual(self.callback().outcome, Outcome.FAILED)
        self.assertEqual(reload(self.payment).failure_code, "amount_mismatch")

    def test_validation_for_another_transaction(self):
        self.gateway.valid("VAL-C", "TXN-OTHER", "299.00")
        self.assertEqual(self.callback().outcome, Outcome.FAILED)
        self.assertEqual(reload(self.payment).failure_code, "transaction_mismatch")

    def test_strict_policy_rejects_ambiguous_validation(self):
        result = self.callback()
        self.assertEqual(result.outcome, Outcome.FAILED)
        self.assertEqual(reload(self.payment).failure_code, "validation_failed")

    def test_lenient_policy_accepts_matching_sandbox_callback(self):
        result = self.callback(policy=ValidationPolicy(name=LENIENT))
        self.assertEqual(result.outcome, Outcome.COMPLETED)
        self.assertTrue(reload(self.payment).metadata["lenient_validation"])

    def test_lenient_policy_requires_matching_claim(self):
        result = self.callback(policy=ValidationPolicy(name=LENIENT), claimed_amount="1.00")
        self.assertEqual(result.outcome, Outcome.FAILED)

    def test_lenient_policy_ignored_on_live_gateway(self):
        live = FakeGateway(FLOW_REDIRECT, live_mode=True)
        result = self.callback(policy=ValidationPolicy(name=LENIENT), gateway=live)
        self.assertEqual(result.outcome, Outcome.FAILED)

    def test_without_validation_ref_queries_transaction(self):
        self.gateway.succeed("TXN-C", "299.00", charge="BANK-Q")
        result = self.callback(validation_ref=None)
        self.assertEqual(result.outcome, Outcome.COMPLETED)
        self.assertEqual(self.gateway.calls[0][0], "retrieve_status")

    def close(self, action, channel=Channel.CALLBACK):
        reconciler = ConfirmationReconciler(gateway_factory=self.gateway.factory, policy=ValidationPolicy())
        event = ConfirmationEvent(transaction_ref="TXN-C", channel=channel, claimed_status=action.upper())
        if action == "cancelled":
            return reconciler.record_cancellation(event)
        return reconciler.record_failure(event, code="gateway_failed", message="Declined by bank")

    def test_unconfirmed_failure_claim_leaves_payment_open(self):
        result = self.close("failed")

        self.assertEqual(result.outcome, Outcome.PENDING)
        self.assertEqual(reload(self.payment).status, PS.PENDING)
        self.assertEqual(self.gateway.calls, [("retrieve_status", "TXN-C")])

        self.gateway.valid("VAL-C", "TXN-C", "299.00")
        self.assertEqual(self.callback().outcome, Outcome.COMPLETED)
        self.assertEqual(reload(self.enrollment).status, ES.ACTIVE)

    def test_failure_claim_confirmed_by_provider(self):
        self.gateway.decline("TXN-C")
        result = self.close("failed", channel=Channel.IPN)
        self.assertEqual(result.outcome, Outcome.FAILED)
        self.assertEqual(reload(self.payment).failure_code, "gateway_failed")

    def test_cancel_claim_for_a_paid_transaction_completes_it(self):
        self.gateway.succeed("TXN-C", "299.00", charge="BANK-X")

        result = self.close("cancelled")

        self.assertEqual(result.outcome, Outcome.COMPLETED)
        self.assertEqual(reload(self.payment).status, PS.COMPLETED)
        self.assertEqual(reload(self.enrollment).status, ES.ACTIVE)

    def test_claim_on_closed_payment_skips_provider(self):
        Payment.objects.filter(pk=self.payment.pk).update(status=PS.COMPLETED)
        result = self.close("cancelled", channel=Channel.IPN)
        self.assertEqual(result.outcome, Outcome.ALREADY_COMPLETED)
        self.assertEqual(self.gateway.calls, [])

    def test_signed_webhook_failure_needs_no_provider_check(self):
        result = self.close("failed", channel=Channel.WEBHOOK)
        self.assertEqual(result.outcome, Outcome.FAILED)
        self.assertEqual(self.gateway.calls, [])

    @override_settings(PAYMENT_VALIDATION_POLICY="sometimes")
    def test_unknown_policy_name_is_a_configuration_error(self):
        with self.assertRaises(ConfigurationError):
            ValidationPolicy.from_settings()


class OfflineConfirmationTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.student = make_user()
        cls.course = make_course(price="20.00")

    def test_cash_payment_confirmed_by_admin(self):
        enrollment = EnrollmentService().create_enrollment(self.student, self.course.pk)
        payment = make_payment(enrollment, method=Payment.Method.CASH)
        result = ConfirmationReconciler(policy=ValidationPolicy()).confirm_offline(payment)
        self.assertEqual(result.outcome, Outcome.COMPLETED)
        self.assertEqual(reload(enrollment).status, ES.ACTIVE)
        self.assertEqual(reload(enrollment).payment_method, "cash")

    def test_only_cash_can_be_confirmed_offline(self):
        enrollment = EnrollmentService().create_enrollment(self.student, self.course.pk)
        payment = make_payment(enrollment, method=FLOW_INTENT)
        with self.assertRaises(ValidationError):
            ConfirmationReconciler(policy=ValidationPolicy()).confirm_offline(payment)

    def test_callback_claim_for_cash_payment_is_ignored(self):
        enrollment = EnrollmentService().create_enrollment(self.student, self.course.pk)
        payment = make_payment(enrollment, method=Payment.Method.CASH)
        result = ConfirmationReconciler(policy=ValidationPolicy()).record_failure(
            ConfirmationEvent(transaction_ref=payment.transaction_ref, channel=Channel.CALLBACK),
            code="gateway_failed",
            message="Declined by bank",
        )
        self.assertEqual(result.outcome, Outcome.PENDING)
        self.assertEqual(reload(payment).status, PS.PENDING)
