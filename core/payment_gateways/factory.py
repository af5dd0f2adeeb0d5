"""
Gateway factory.

Builds a fresh gateway client from Django settings each time it is called.
Services receive this callable (or a test double with the same signature)
instead of reaching for a shared module-level client.
"""

import logging

from django.conf import settings

from core.exceptions import ConfigurationError

from .base import FLOW_INTENT, FLOW_REDIRECT, GatewayClient
from .sslcommerz_gateway import SSLCommerzRedirectGateway
from .stripe_gateway import StripeIntentGateway

logger = logging.getLogger(__name__)


def build_stripe_gateway() -> StripeIntentGateway:
    live = settings.STRIPE_LIVE_MODE
    return StripeIntentGateway(
        secret_key=settings.STRIPE_LIVE_SECRET_KEY if live else settings.STRIPE_TEST_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        publishable_key=(
            settings.STRIPE_LIVE_PUBLISHABLE_KEY if live else settings.STRIPE_TEST_PUBLISHABLE_KEY
        ),
        live_mode=live,
        timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
    )


def build_sslcommerz_gateway() -> SSLCommerzRedirectGateway:
    return SSLCommerzRedirectGateway(
        store_id=settings.SSLCOMMERZ_STORE_ID,
        store_password=settings.SSLCOMMERZ_STORE_PASSWORD,
        is_live=settings.SSLCOMMERZ_IS_LIVE,
        server_url=settings.SERVER_URL,
        timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
    )


GATEWAY_BUILDERS = {
    FLOW_INTENT: build_stripe_gateway,
    FLOW_REDIRECT: build_sslcommerz_gateway,
}


def build_gateway(method: str) -> GatewayClient:
    """
    Return a new gateway client for a payment method.

    Raises:
        ConfigurationError: no gateway exists for `method` (e.g. cash)
    """
    try:
        builder = GATEWAY_BUILDERS[method]
    except KeyError:
        raise ConfigurationError(f"No payment gateway configured for method '{method}'")
    logger.debug("Building %s gateway client", method)
    return builder()
