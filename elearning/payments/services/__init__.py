"""
Payment services: initiation, confirmation reconciliation and refunds.
"""

from .checkout import CheckoutResult, CheckoutService
from .events import ConfirmationEvent
from .reconciler import ConfirmationReconciler, Outcome, ReconciliationResult
from .refunds import RefundOutcome, RefundProcessor
from .validation_policy import LENIENT, STRICT, ValidationPolicy

__all__ = [
    "CheckoutResult",
    "CheckoutService",
    "ConfirmationEvent",
    "ConfirmationReconciler",
    "LENIENT",
    "Outcome",
    "ReconciliationResult",
    "RefundOutcome",
    "RefundProcessor",
    "STRICT",
    "ValidationPolicy",
]
