"""
Payment gateway clients (Stripe PaymentIntents, SSLCommerz hosted page).
"""

from .base import (
    FLOW_INTENT,
    FLOW_REDIRECT,
    GatewayClient,
    InitiationResult,
    ProviderStatus,
    RefundResult,
    StatusResult,
    ValidationResult,
)
from .factory import build_gateway

__all__ = [
    "FLOW_INTENT",
    "FLOW_REDIRECT",
    "GatewayClient",
    "InitiationResult",
    "ProviderStatus",
    "RefundResult",
    "StatusResult",
    "ValidationResult",
    "build_gateway",
]
