"""
E-Learning Application Configuration

This module contains the Django application configuration for the E-Learning system.

The E-Learning application provides course enrollment with paid access:
seat-limited courses, enrollments, and payment confirmation through the
Stripe (intent-based) and SSLCommerz (redirect-based) gateways.

Author: DSP Development Team
Version: 1.0.0
"""

import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class ElearningConfig(AppConfig):
    """
    Configuration class for the E-Learning Django application.

    Attributes:
        default_auto_field: Default primary key field type for models
        name: Application name for Django registration
        verbose_name: Human-readable application name for admin interface
    """

    default_auto_field: str = "django.db.models.BigAutoField"
    name: str = "elearning"
    verbose_name: str = "E-Learning System"

    def ready(self) -> None:
        """
        Validate payment configuration at startup.

        Only settings are inspected here; no database or network access.
        An invalid validation policy fails fast instead of on the first
        redirect callback.
        """
        super().ready()
        from django.conf import settings

        from .payments.services.validation_policy import ValidationPolicy

        policy = ValidationPolicy.from_settings()
        if policy.name != "strict" and settings.SSLCOMMERZ_IS_LIVE:
            logger.warning(
                "PAYMENT_VALIDATION_POLICY=%s has no effect against the live SSLCommerz gateway",
                policy.name,
            )
