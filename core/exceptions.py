"""
Payment Platform Custom Exceptions

This module provides the exception hierarchy shared by the payment gateway
clients and the enrollment/payment services. Every exception carries an HTTP
status code and a machine-readable error code so that the DRF exception
handler at the bottom of this module can render it without the views having
to translate errors by hand.

Hierarchy:
- PaymentPlatformException
  - ValidationError, NotFoundError, AuthorizationError
  - AmountMismatchError, AlreadyCompletedError, InvalidTransitionError
  - RefundExceedsBalanceError, CapacityExceededError
  - WebhookSignatureError
  - GatewayError (declined, invalid_request, api_error, connection, auth)
  - ConfigurationError

Author: DSP Development Team
Version: 1.0.0
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class PaymentPlatformException(Exception):
    """
    Base exception class for all payment and enrollment errors.

    Attributes:
        message (str): Human-readable error message
        status_code (int): HTTP status code the API responds with
        error_code (str): Stable identifier for clients
        details (Dict[str, Any]): Additional error details

    Example:
        >>> try:
        ...     refund_processor.refund(payment.id, Decimal("500"), "duplicate", admin)
        ... except PaymentPlatformException as e:
        ...     logger.error("Refund failed: %s (%s)", e.message, e.error_code)
    """

    default_status_code: int = 400
    default_error_code: str = "payment_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code or self.default_status_code
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for serialization.

        Returns:
            Dictionary representation of the exception
        """
        return {
            "message": self.message,
            "status_code": self.status_code,
            "error_code": self.error_code,
            "details": self.details,
            "exception_type": self.__class__.__name__,
        }


class ValidationError(PaymentPlatformException):
    """Malformed or semantically invalid input."""

    default_status_code = 400
    default_error_code = "validation_error"


class NotFoundError(PaymentPlatformException):
    """Unknown payment, enrollment, course or transaction reference."""

    default_status_code = 404
    default_error_code = "not_found"

    def __init__(self, resource: str, identifier: Any) -> None:
        super().__init__(
            message=f"{resource} '{identifier}' not found",
            details={"resource": resource, "identifier": str(identifier)},
        )


class AuthorizationError(PaymentPlatformException):
    """Caller does not own the resource or lacks the admin role."""

    default_status_code = 403
    default_error_code = "not_authorized"

    def __init__(self, message: str = "Not authorized to access this resource") -> None:
        super().__init__(message)


class AmountMismatchError(PaymentPlatformException):
    """
    Provider-reported amount or currency differs from the stored payment.

    The reconciler never lets this escape to a webhook/IPN caller; it is
    recorded on the Payment and returned as part of the reconciliation result.
    """

    default_status_code = 409
    default_error_code = "amount_mismatch"

    def __init__(
        self,
        expected: Decimal,
        received: Optional[Decimal],
        currency: str = "",
        received_currency: str = "",
    ) -> None:
        self.expected = expected
        self.received = received
        super().__init__(
            message=f"Payment amount mismatch: expected {expected} {currency}, "
            f"received {received} {received_currency}".strip(),
            details={
                "expected": str(expected),
                "received": None if received is None else str(received),
                "currency": currency,
                "received_currency": received_currency,
            },
        )


class AlreadyCompletedError(PaymentPlatformException):
    """The enrollment or payment has already been paid for."""

    default_status_code = 400
    default_error_code = "already_completed"


class InvalidTransitionError(PaymentPlatformException):
    """A status change that the transition table does not allow."""

    default_status_code = 409
    default_error_code = "invalid_transition"

    def __init__(self, entity: str, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(
            message=f"{entity} cannot move from '{current}' to '{target}'",
            details={"entity": entity, "current": current, "target": target},
        )


class RefundExceedsBalanceError(PaymentPlatformException):
    """Requested refund is larger than the refundable balance."""

    default_status_code = 400
    default_error_code = "refund_exceeds_balance"

    def __init__(self, requested: Decimal, refundable: Decimal) -> None:
        super().__init__(
            message=f"Refund amount {requested} exceeds refundable balance {refundable}",
            details={"requested": str(requested), "refundable": str(refundable)},
        )


class CapacityExceededError(PaymentPlatformException):
    """The course has no free seats left."""

    default_status_code = 409
    default_error_code = "capacity_exceeded"

    def __init__(self, course_id: Any, max_students: int) -> None:
        super().__init__(
            message="Course is full",
            details={"course_id": str(course_id), "max_students": max_students},
        )


class WebhookSignatureError(PaymentPlatformException):
    """Inbound provider notification failed signature verification."""

    default_status_code = 400
    default_error_code = "invalid_signature"


class GatewayError(PaymentPlatformException):
    """
    Exception raised when a payment provider call fails.

    Attributes:
        kind (str): One of the KIND_* constants
        provider (str): Gateway name, e.g. "stripe" or "sslcommerz"

    Connection and API errors are retryable: the caller surfaces a 5xx and
    no local state is changed.
    """

    KIND_DECLINED = "declined"
    KIND_INVALID_REQUEST = "invalid_request"
    KIND_API_ERROR = "api_error"
    KIND_CONNECTION = "connection"
    KIND_AUTH = "auth"

    STATUS_BY_KIND = {
        KIND_DECLINED: 402,
        KIND_INVALID_REQUEST: 400,
        KIND_API_ERROR: 503,
        KIND_CONNECTION: 503,
        KIND_AUTH: 502,
    }

    def __init__(
        self,
        message: str,
        kind: str = KIND_API_ERROR,
        provider: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.kind = kind
        self.provider = provider
        super().__init__(
            message=message,
            status_code=self.STATUS_BY_KIND.get(kind, 503),
            error_code=f"gateway_{kind}",
            details={"provider": provider, **(details or {})},
        )

    @property
    def retryable(self) -> bool:
        return self.kind in (self.KIND_API_ERROR, self.KIND_CONNECTION)


class ConfigurationError(PaymentPlatformException):
    """Provider credentials or settings are missing."""

    default_status_code = 500
    default_error_code = "configuration_error"


def api_exception_handler(exc, context):
    """
    DRF exception handler rendering PaymentPlatformException subclasses.

    Registered as REST_FRAMEWORK["EXCEPTION_HANDLER"]. Anything that is not
    one of ours falls through to DRF's default handling.
    """
    if isinstance(exc, PaymentPlatformException):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.__class__.__name__, exc.message)
        else:
            logger.info("%s: %s", exc.__class__.__name__, exc.message)
        payload = {
            "message": exc.message,
            "error_code": exc.error_code,
            "details": exc.details,
        }
        return Response(payload, status=exc.status_code)
    return exception_handler(exc, context)
