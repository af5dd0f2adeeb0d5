"""
E-Learning Application URL Configuration

This module defines the URL routing structure for the E-Learning application.
Each functional area (enrollments, payments) has its own URL namespace.

URL Structure (mounted under /api/elearning/):
- enrollments/: Enrollment lifecycle (create, cancel, progress, completion)
- payments/: Payment initiation, confirmation channels, refunds

Confirmation channels:
- payments/intent/confirm/        synchronous confirm (Stripe)
- payments/webhook/               Stripe webhook
- payments/redirect/callback/...  SSLCommerz browser callback
- payments/redirect/ipn/          SSLCommerz IPN
- payments/redirect/verify/       frontend verify

Author: DSP Development Team
Version: 1.0.0
"""

from typing import List

from django.urls import URLPattern, include, path, re_path

from .enrollments import views as enrollment_views
from .payments import views as payment_views

app_name = "elearning"

# --- Enrollment URL Patterns ---

enrollments_urlpatterns: List[URLPattern] = [
    path("", enrollment_views.EnrollmentCreateView.as_view(), name="enrollment-create"),
    path("mine/", enrollment_views.MyEnrollmentsView.as_view(), name="enrollment-mine"),
    path("<int:pk>/", enrollment_views.EnrollmentDetailView.as_view(), name="enrollment-detail"),
    path("<int:pk>/cancel/", enrollment_views.EnrollmentCancelView.as_view(), name="enrollment-cancel"),
    path("<int:pk>/progress/", enrollment_views.EnrollmentProgressView.as_view(), name="enrollment-progress"),
    path("<int:pk>/complete/", enrollment_views.EnrollmentCompleteView.as_view(), name="enrollment-complete"),
]

# --- Payment URL Patterns ---

payments_urlpatterns: List[URLPattern] = [
    # Admin listing and per-payment endpoints
    path("", payment_views.PaymentListView.as_view(), name="payment-list"),
    path("<int:pk>/", payment_views.PaymentDetailView.as_view(), name="payment-detail"),
    path("<int:pk>/refund/", payment_views.PaymentRefundView.as_view(), name="payment-refund"),

    # Intent-based gateway (Stripe)
    path("intent/config/", payment_views.StripeConfigView.as_view(), name="intent-config"),
    path("intent/init/", payment_views.IntentInitView.as_view(), name="intent-init"),
    path("intent/confirm/", payment_views.IntentConfirmView.as_view(), name="intent-confirm"),
    path("webhook/", payment_views.StripeWebhookView.as_view(), name="webhook"),

    # Redirect-based gateway (SSLCommerz)
    path("redirect/init/", payment_views.RedirectInitView.as_view(), name="redirect-init"),
    re_path(
        r"^redirect/callback/(?P<state>success|fail|cancel)/$",
        payment_views.RedirectCallbackView.as_view(),
        name="redirect-callback",
    ),
    path("redirect/ipn/", payment_views.RedirectIPNView.as_view(), name="redirect-ipn"),
    path("redirect/verify/", payment_views.RedirectVerifyView.as_view(), name="redirect-verify"),
    path("redirect/query/", payment_views.RedirectQueryView.as_view(), name="redirect-query"),
]

# --- Main URL Configuration for E-Learning Application ---

urlpatterns: List[URLPattern] = [
    path("enrollments/", include((enrollments_urlpatterns, "enrollments"))),
    path("payments/", include((payments_urlpatterns, "payments"))),
]
