"""
E-Learning Application Django Admin Configuration

This module provides the Django admin interface for the course enrollment
and payment models.

The admin interface is organized into logical sections:
- Course Management: Prices, capacity and publication state
- Enrollment Management: Enrollment status and payment projection
- Payment Management: Payment attempts, offline (cash) confirmation and the
  confirmation event log

Payments and enrollments cannot be deleted from the admin. Status fields are
read-only; state changes go through the payment services so that the
enrollment projection and seat counters stay consistent.

Author: DSP Development Team
Version: 1.0.0
"""

import logging
from typing import Optional

from django.contrib import admin, messages
from django.db.models import QuerySet
from django.http import HttpRequest
from django.utils.translation import gettext_lazy as _

from core.exceptions import PaymentPlatformException
from .models import Course, Enrollment, Payment, PaymentEvent
from .payments.services import ConfirmationReconciler

logger = logging.getLogger(__name__)

# --- Course Management Administration ---


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    """Administration interface for purchasable courses."""

    list_display = (
        "title",
        "price",
        "currency",
        "current_students",
        "max_students",
        "is_published",
        "is_active",
    )
    list_filter = ("is_published", "is_active", "currency")
    search_fields = ("title", "description")
    readonly_fields = ("current_students", "created_at", "updated_at")

    fieldsets = (
        (_("Basic Information"), {"fields": ("title", "description")}),
        (_("Pricing"), {"fields": ("price", "currency")}),
        (
            _("Capacity"),
            {
                "fields": ("max_students", "current_students"),
                "description": _("Max students 0 means unlimited seats"),
            },
        ),
        (_("Availability"), {"fields": ("is_published", "is_active")}),
        (_("Timestamps"), {"fields": ("created_at", "updated_at"), "classes": ("collapse",)}),
    )


# --- Enrollment Management Administration ---


class PaymentInline(admin.TabularInline):
    """Read-only list of the payment attempts of an enrollment."""

    model = Payment
    extra = 0
    can_delete = False
    show_change_link = True
    fields = ("transaction_ref", "method", "amount", "currency", "status", "created_at")
    readonly_fields = fields

    def has_add_permission(self, request: HttpRequest, obj=None) -> bool:
        return False


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    """Administration interface for enrollments."""

    list_display = (
        "student",
        "course",
        "status",
        "payment_status",
        "payment_amount",
        "progress",
        "enrollment_date",
    )
    list_filter = ("status", "payment_status", "course")
    search_fields = ("student__username", "student__email", "course__title")
    autocomplete_fields = ("student", "course")
    readonly_fields = (
        "status",
        "payment_amount",
        "payment_currency",
        "payment_method",
        "payment_status",
        "payment_transaction_ref",
        "payment_date",
        "refund_amount",
        "refund_date",
        "refund_reason",
        "seat_released",
        "cancelled_at",
        "enrollment_date",
        "updated_at",
    )
    inlines = [PaymentInline]

    def has_delete_permission(self, request: HttpRequest, obj: Optional[Enrollment] = None) -> bool:
        return False

    def get_queryset(self, request: HttpRequest) -> QuerySet:
        """Optimize queryset with related object prefetch."""
        return super().get_queryset(request).select_related("student", "course")


# --- Payment Management Administration ---


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Administration interface for payments.

    New payments can only be created here for the cash method; card and
    SSLCommerz payments are created by the checkout endpoints. `amount` and
    `currency` are editable on creation only.
    """

    list_display = (
        "transaction_ref",
        "user",
        "course",
        "method",
        "amount",
        "currency",
        "status",
        "refund_amount",
        "created_at",
    )
    list_filter = ("status", "method", "currency", "is_test")
    search_fields = (
        "transaction_ref",
        "gateway_transaction_ref",
        "validation_ref",
        "user__username",
        "user__email",
    )
    autocomplete_fields = ("user", "enrollment", "course")
    actions = ["confirm_cash_payments"]

    immutable_fields = ("amount", "currency", "method", "user", "enrollment", "course", "transaction_ref")
    state_fields = (
        "status",
        "gateway_transaction_ref",
        "validation_ref",
        "net_amount",
        "refund_amount",
        "refund_reason",
        "refund_processed_by",
        "refund_processed_at",
        "refund_ref",
        "failure_code",
        "failure_message",
        "payment_date",
        "created_at",
        "updated_at",
    )

    def get_readonly_fields(self, request: HttpRequest, obj: Optional[Payment] = None):
        if obj is None:
            return self.state_fields
        return self.immutable_fields + self.state_fields

    def has_delete_permission(self, request: HttpRequest, obj: Optional[Payment] = None) -> bool:
        return False

    def get_queryset(self, request: HttpRequest) -> QuerySet:
        return super().get_queryset(request).select_related("user", "course", "enrollment")

    @admin.action(description=_("Confirm selected cash payments as received"))
    def confirm_cash_payments(self, request: HttpRequest, queryset: QuerySet) -> None:
        reconciler = ConfirmationReconciler()
        confirmed = 0
        for payment in queryset.filter(method=Payment.Method.CASH):
            try:
                result = reconciler.confirm_offline(payment)
            except PaymentPlatformException as exc:
                self.message_user(request, f"{payment.transaction_ref}: {exc.message}", messages.ERROR)
                continue
            if result.is_success:
                confirmed += 1
            logger.info(
                "Cash payment %s confirmed by %s: %s",
                payment.transaction_ref,
                request.user,
                result.outcome,
            )
        self.message_user(request, f"{confirmed} cash payment(s) confirmed.", messages.SUCCESS)


@admin.register(PaymentEvent)
class PaymentEventAdmin(admin.ModelAdmin):
    """Read-only view of the confirmation event log."""

    list_display = ("received_at", "channel", "event_type", "transaction_ref", "outcome")
    list_filter = ("channel", "outcome", "event_type")
    search_fields = ("transaction_ref", "provider_event_id")
    date_hierarchy = "received_at"

    def get_readonly_fields(self, request: HttpRequest, obj: Optional[PaymentEvent] = None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request: HttpRequest) -> bool:
        return False

    def has_delete_permission(self, request: HttpRequest, obj: Optional[PaymentEvent] = None) -> bool:
        return False
