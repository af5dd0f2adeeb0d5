"""
Reconcile Pending Payments Command

Re-checks stale pending/processing gateway payments with their provider and
feeds the answer through the confirmation reconciler. Covers payments whose
callbacks, IPN and webhooks were all lost. Intended to run from cron.

Features:
- Only payments older than --older-than minutes are considered
- Cash payments are skipped (they are confirmed by an admin)
- Provider outages are reported per payment and do not stop the run
- Dry-run mode lists candidates without contacting any provider

Author: DSP Development Team
Version: 1.0.0
"""

from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from core.exceptions import PaymentPlatformException
from elearning.payments.models import Payment, PaymentEvent
from elearning.payments.services import ConfirmationEvent, ConfirmationReconciler

# --- Management Command: Reconcile stale pending payments ---


class Command(BaseCommand):
    """
    Reconcile stale pending payments

    Usage:
        python manage.py reconcile_pending_payments
        python manage.py reconcile_pending_payments --older-than 60 --limit 50
        python manage.py reconcile_pending_payments --dry-run
    """

    help = "Re-check stale pending gateway payments with the provider"

    def add_arguments(self, parser):
        parser.add_argument(
            "--older-than",
            type=int,
            default=30,
            help="Only payments created more than this many minutes ago (default: 30)",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=100,
            help="Maximum number of payments to check in one run (default: 100)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List the payments that would be checked without contacting providers",
        )

    def handle(self, *args, **options):
        """Run the sweep."""
        cutoff = timezone.now() - timedelta(minutes=options["older_than"])
        candidates = list(
            Payment.objects.filter(
                status__in=Payment.OPEN_STATUSES,
                created_at__lt=cutoff,
            )
            .exclude(method=Payment.Method.CASH)
            .order_by("created_at")[: options["limit"]]
        )

        if not candidates:
            self.stdout.write(self.style.SUCCESS("No stale pending payments found"))
            return

        self.stdout.write(f"{len(candidates)} stale pending payment(s) found")

        if options["dry_run"]:
            for payment in candidates:
                self.stdout.write(
                    f"  {payment.transaction_ref} {payment.method} {payment.status} "
                    f"created {payment.created_at:%Y-%m-%d %H:%M}"
                )
            self.stdout.write(self.style.WARNING("DRY RUN: no provider was contacted"))
            return

        reconciler = ConfirmationReconciler()
        outcomes = {}
        errors = 0
        for payment in candidates:
            event = ConfirmationEvent(
                transaction_ref=payment.transaction_ref,
                channel=PaymentEvent.Channel.SWEEP,
                validation_ref=payment.validation_ref or None,
            )
            try:
                result = reconciler.reconcile(event)
            except PaymentPlatformException as exc:
                errors += 1
                self.stderr.write(f"  {payment.transaction_ref}: {exc.error_code} {exc.message}")
                continue
            outcomes[result.outcome] = outcomes.get(result.outcome, 0) + 1
            self.stdout.write(f"  {payment.transaction_ref}: {result.outcome}")

        summary = ", ".join(f"{outcome}={count}" for outcome, count in sorted(outcomes.items()))
        self.stdout.write(self.style.SUCCESS(f"Reconciled: {summary or 'none'}"))
        if errors:
            self.stdout.write(self.style.ERROR(f"{errors} payment(s) could not be checked"))
