"""
Validation policy for redirect-gateway confirmations.

The SSLCommerz sandbox sometimes answers INVALID_TRANSACTION for a `val_id`
whose callback otherwise reports a valid payment. Whether such an ambiguous
answer may be accepted is decided here, explicitly:

- strict (default): only a VALID/VALIDATED answer from the validation API
  confirms a payment.
- lenient: additionally accept an ambiguous answer when the gateway is not
  live, the callback claims success, the claimed amount matches the payment
  and the transaction reference lines up.

Against a live gateway the lenient rule never applies.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.conf import settings

from core.exceptions import ConfigurationError
from core.payment_gateways import ValidationResult

logger = logging.getLogger(__name__)

STRICT = "strict"
LENIENT = "lenient"

SUCCESS_CLAIMS = ("VALID", "VALIDATED", "SUCCESS")


@dataclass
class ValidationDecision:
    accepted: bool
    amount: Optional[Decimal] = None
    currency: str = ""
    reason: str = ""
    lenient: bool = False


@dataclass(frozen=True)
class ValidationPolicy:
    name: str = STRICT
    tolerance: Decimal = Decimal("0.01")

    @classmethod
    def from_settings(cls) -> "ValidationPolicy":
        name = (settings.PAYMENT_VALIDATION_POLICY or STRICT).lower()
        if name not in (STRICT, LENIENT):
            raise ConfigurationError(
                f"PAYMENT_VALIDATION_POLICY must be '{STRICT}' or '{LENIENT}', got '{name}'"
            )
        return cls(name=name, tolerance=Decimal(str(settings.PAYMENT_AMOUNT_TOLERANCE)))

    def evaluate(self, result: ValidationResult, payment, event, gateway_live: bool) -> ValidationDecision:
        if result.valid:
            return ValidationDecision(True, amount=result.amount, currency=result.currency)

        reason = f"Validation returned {result.raw_status or 'no status'}"
        if self.name != LENIENT or not result.ambiguous:
            return ValidationDecision(False, reason=reason)
        if gateway_live:
            logger.warning(
                "Lenient validation ignored for %s: gateway is live", payment.transaction_ref
            )
            return ValidationDecision(False, reason=reason)

        claimed_status = (event.claimed_status or "").upper()
        claimed_amount = event.claimed_amount
        if (
            claimed_status in SUCCESS_CLAIMS
            and claimed_amount is not None
            and abs(claimed_amount - payment.amount) <= self.tolerance
            and event.transaction_ref == payment.transaction_ref
        ):
            logger.warning(
                "Accepting ambiguous validation for %s under lenient policy (claimed %s %s)",
                payment.transaction_ref,
                claimed_status,
                claimed_amount,
            )
            return ValidationDecision(
                True,
                amount=claimed_amount,
                currency=(event.claimed_currency or payment.currency).upper(),
                reason=reason,
                lenient=True,
            )
        return ValidationDecision(False, reason=reason)
