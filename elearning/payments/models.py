"""
E-Learning Payment Models

Models:
- Payment: One purchase attempt for an enrollment
- PaymentEvent: Append-only log of every confirmation event received for a
  payment (sync confirm, webhook, redirect callback, IPN, verify, sweep)

A failed payment is never reused; a retry creates a new Payment for the same
enrollment. Status changes are applied with conditional updates by the
services in `elearning.payments.services`, never by assigning `status` and
calling `save()`.

Author: DSP Development Team
Version: 1.0.0
"""

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils.translation import gettext_lazy as _

from core.exceptions import ValidationError
from core.payment_gateways import FLOW_INTENT, FLOW_REDIRECT
from elearning.courses.models import Course
from elearning.enrollments.models import Enrollment

__all__ = ["Payment", "PaymentEvent"]


class Payment(models.Model):
    """
    A single purchase attempt.

    Attributes:
        amount: Charged amount, fixed at creation
        currency: Currency of `amount`, fixed at creation
        transaction_ref: Correlation id shared with the provider for this
            attempt (PaymentIntent id or SSLCommerz tran_id)
        gateway_transaction_ref: Provider id recorded on completion
            (charge id / bank transaction id)
        validation_ref: Provider proof-of-validation id (SSLCommerz val_id)
        net_amount: amount - discount_amount + tax_amount, recomputed on save
        refund_amount: Cumulative refunded amount, never above `amount`

    Example:
        >>> payment.refundable_amount
        Decimal('49.99')
    """

    class Method(models.TextChoices):
        INTENT_GATEWAY = FLOW_INTENT, _("Card (Stripe)")
        REDIRECT_GATEWAY = FLOW_REDIRECT, _("SSLCommerz")
        CASH = "cash", _("Cash")

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        PROCESSING = "processing", _("Processing")
        COMPLETED = "completed", _("Completed")
        FAILED = "failed", _("Failed")
        CANCELLED = "cancelled", _("Cancelled")
        REFUNDED = "refunded", _("Refunded")

    OPEN_STATUSES = (Status.PENDING, Status.PROCESSING)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments",
        verbose_name=_("User"),
    )
    enrollment = models.ForeignKey(
        Enrollment,
        on_delete=models.PROTECT,
        related_name="payments",
        verbose_name=_("Enrollment"),
    )
    course = models.ForeignKey(
        Course,
        on_delete=models.PROTECT,
        related_name="payments",
        verbose_name=_("Course"),
    )

    amount = models.DecimalField(max_digits=10, decimal_places=2, verbose_name=_("Amount"))
    currency = models.CharField(max_length=3, verbose_name=_("Currency"))
    method = models.CharField(max_length=32, choices=Method.choices, verbose_name=_("Method"))
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        verbose_name=_("Status"),
    )

    transaction_ref = models.CharField(max_length=255, unique=True, verbose_name=_("Transaction Ref"))
    gateway_transaction_ref = models.CharField(
        max_length=255, unique=True, null=True, blank=True, verbose_name=_("Gateway Transaction Ref")
    )
    validation_ref = models.CharField(max_length=255, blank=True, verbose_name=_("Validation Ref"))

    # Pass-through pricing values supplied by upstream configuration
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    discount_code = models.CharField(max_length=64, blank=True)
    tax_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))
    net_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))

    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    refund_reason = models.TextField(blank=True)
    refund_processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    refund_processed_at = models.DateTimeField(null=True, blank=True)
    refund_ref = models.CharField(max_length=255, blank=True)

    failure_code = models.CharField(max_length=64, blank=True)
    failure_message = models.TextField(blank=True)

    metadata = models.JSONField(default=dict, blank=True)
    description = models.CharField(max_length=255, blank=True)
    is_test = models.BooleanField(default=False)

    payment_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Payment")
        verbose_name_plural = _("Payments")
        ordering = ["-created_at"]
        db_table = "elearning_payment"
        constraints = [
            models.CheckConstraint(condition=Q(amount__gte=0), name="payment_amount_non_negative"),
            models.CheckConstraint(condition=Q(refund_amount__gte=0), name="payment_refund_non_negative"),
            models.CheckConstraint(
                condition=Q(refund_amount__lte=F("amount")),
                name="payment_refund_within_amount",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.transaction_ref} {self.amount} {self.currency} ({self.status})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_values = {
            name: getattr(instance, name)
            for name in ("amount", "currency")
            if name in field_names
        }
        return instance

    def compute_net_amount(self) -> Decimal:
        return (
            Decimal(self.amount or 0)
            - Decimal(self.discount_amount or 0)
            + Decimal(self.tax_amount or 0)
        )

    def save(self, *args, **kwargs):
        loaded = getattr(self, "_loaded_values", {})
        if "amount" in loaded and Decimal(self.amount) != loaded["amount"]:
            raise ValidationError("Payment amount cannot be changed after creation")
        if "currency" in loaded and self.currency != loaded["currency"]:
            raise ValidationError("Payment currency cannot be changed after creation")

        self.net_amount = self.compute_net_amount()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "net_amount" not in update_fields:
            kwargs["update_fields"] = list(update_fields) + ["net_amount"]
        super().save(*args, **kwargs)

    @property
    def refundable_amount(self) -> Decimal:
        if self.status != self.Status.COMPLETED:
            return Decimal("0.00")
        return self.amount - self.refund_amount

    @property
    def is_open(self) -> bool:
        return self.status in self.OPEN_STATUSES


class PaymentEvent(models.Model):
    """
    Record of one inbound confirmation event.

    Stripe webhook deliveries carry their event id in `provider_event_id`,
    which is unique; a redelivery of an already processed event is detected
    through it.
    """

    class Channel(models.TextChoices):
        CONFIRM = "confirm", _("Synchronous confirm")
        WEBHOOK = "webhook", _("Webhook")
        CALLBACK = "callback", _("Redirect callback")
        IPN = "ipn", _("IPN")
        VERIFY = "verify", _("Verify")
        SWEEP = "sweep", _("Pending sweep")

    payment = models.ForeignKey(
        Payment,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="events",
    )
    transaction_ref = models.CharField(max_length=255, blank=True, db_index=True)
    channel = models.CharField(max_length=16, choices=Channel.choices)
    event_type = models.CharField(max_length=64, blank=True)
    provider_event_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    payload = models.JSONField(default=dict, blank=True)
    outcome = models.CharField(max_length=32, blank=True)
    error_message = models.TextField(blank=True)
    received_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = _("Payment Event")
        verbose_name_plural = _("Payment Events")
        ordering = ["-received_at"]
        db_table = "elearning_payment_event"

    def __str__(self) -> str:
        return f"{self.channel}:{self.event_type or '-'} {self.transaction_ref} -> {self.outcome or 'received'}"
