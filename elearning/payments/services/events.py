"""
Confirmation events and the durable event log.

Every channel that can report a payment outcome (sync confirm, webhook,
redirect callback, IPN, verify, pending sweep) is translated by its view into
a `ConfirmationEvent` and written to `PaymentEvent` before it is processed.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from django.utils import timezone

from core.payment_gateways import StatusResult

from ..models import Payment, PaymentEvent

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationEvent:
    """
    One inbound notification about a payment attempt.

    Attributes:
        transaction_ref: Correlation id of the attempt
        channel: One of PaymentEvent.Channel
        validation_ref: Provider proof (SSLCommerz val_id), if the channel has one
        claimed_status: Status asserted by an unauthenticated payload
        claimed_amount: Amount asserted by an unauthenticated payload
        provider_status: Provider status taken from a signature-verified
            payload; when set no further provider call is made
        provider_event_id: Provider's unique event id (Stripe event id)
    """

    transaction_ref: str
    channel: str
    validation_ref: Optional[str] = None
    claimed_status: Optional[str] = None
    claimed_amount: Optional[Decimal] = None
    claimed_currency: str = ""
    provider_status: Optional[StatusResult] = None
    event_type: str = ""
    provider_event_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


def record_event(event: ConfirmationEvent, payment: Optional[Payment]) -> PaymentEvent:
    """
    Persist an inbound event.

    Redeliveries of a provider event with a known `provider_event_id` reuse
    the existing row instead of failing on the unique constraint.
    """
    defaults = {
        "payment": payment,
        "transaction_ref": event.transaction_ref or "",
        "channel": event.channel,
        "event_type": event.event_type,
        "payload": event.payload,
    }
    if event.provider_event_id:
        record, created = PaymentEvent.objects.get_or_create(
            provider_event_id=event.provider_event_id, defaults=defaults
        )
        if not created:
            logger.info("Redelivery of provider event %s", event.provider_event_id)
        return record
    return PaymentEvent.objects.create(**defaults)


def finish_event(record: PaymentEvent, outcome: str, error_message: str = "") -> None:
    record.outcome = outcome
    record.error_message = error_message
    record.processed_at = timezone.now()
    record.save(update_fields=["outcome", "error_message", "processed_at"])


def already_processed(provider_event_id: str) -> bool:
    return PaymentEvent.objects.filter(
        provider_event_id=provider_event_id, processed_at__isnull=False
    ).exists()
