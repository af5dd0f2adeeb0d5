"""
Payment Gateway Client Contract

Every provider integration implements `GatewayClient`. The services in
`elearning.payments.services` only talk to this interface, so gateway
instances are created per service (see `factory.build_gateway`) and can be
replaced by an in-memory fake in tests.

Two flows exist:

- intent flow (Stripe PaymentIntents): `initiate` returns a client token, the
  browser authorizes the payment, `retrieve_status` reports the outcome.
- redirect flow (SSLCommerz hosted page): `initiate` returns a redirect URL,
  the outcome arrives via browser callback / IPN and is authenticated with
  `validate`.

All methods must be safe to retry. Transport failures raise
`GatewayError(kind="connection")`.

Author: DSP Development Team
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

FLOW_INTENT = "intent_gateway"
FLOW_REDIRECT = "redirect_gateway"


class ProviderStatus:
    SUCCEEDED = "succeeded"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class InitiationResult:
    transaction_ref: str
    client_token: Optional[str] = None
    redirect_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusResult:
    status: str
    amount: Optional[Decimal] = None
    currency: str = ""
    gateway_transaction_ref: Optional[str] = None
    validation_ref: Optional[str] = None
    error_detail: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == ProviderStatus.SUCCEEDED


@dataclass
class ValidationResult:
    """
    Outcome of authenticating a validation reference with the provider.

    `ambiguous` is set when the provider answered but could not find the
    validation reference. Whether that is acceptable is decided by the
    reconciler's validation policy, never by the gateway.
    """

    valid: bool
    amount: Optional[Decimal] = None
    currency: str = ""
    raw_status: str = ""
    transaction_ref: Optional[str] = None
    gateway_transaction_ref: Optional[str] = None
    ambiguous: bool = False
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    refund_ref: str
    status: str = "succeeded"
    raw: Dict[str, Any] = field(default_factory=dict)


class GatewayClient(ABC):
    """Abstract payment provider client."""

    name: str = ""
    flow: str = ""
    live_mode: bool = False

    @abstractmethod
    def initiate(
        self, amount: Decimal, currency: str, metadata: Dict[str, Any]
    ) -> InitiationResult:
        """
        Start a payment with the provider.

        Raises:
            ConfigurationError: provider credentials are missing
            GatewayError: provider rejected the request or is unreachable
        """

    @abstractmethod
    def retrieve_status(self, transaction_ref: str) -> StatusResult:
        """Ask the provider for the current status of a transaction."""

    @abstractmethod
    def validate(self, validation_ref: str) -> ValidationResult:
        """Authenticate a provider-issued validation reference."""

    @abstractmethod
    def refund(
        self,
        transaction_ref: str,
        amount: Decimal,
        reason: str = "",
        gateway_transaction_ref: Optional[str] = None,
    ) -> RefundResult:
        """Refund `amount` of a completed transaction."""
