"""
Payment and Enrollment State Machine

Closed transition tables for both entities plus a compare-and-swap helper.
Every status change in the payment subsystem goes through
`StatusMachine.compare_and_set`, which issues

    UPDATE ... SET status = <target> WHERE id = <pk> AND status IN (<sources>)

and reports whether this caller won the transition. Two concurrent channels
confirming the same payment therefore cannot both complete it.

A failed payment can still complete: Stripe keeps a declined PaymentIntent
open for another card, so a provider-verified success after a decline is
applied. Cancelled and refunded payments are final.

Author: DSP Development Team
Version: 1.0.0
"""

import logging
from typing import Dict, FrozenSet, Iterable, List, Optional

from django.db import models
from django.utils import timezone

from core.exceptions import InvalidTransitionError
from elearning.enrollments.models import Enrollment

from .models import Payment

logger = logging.getLogger(__name__)

PS = Payment.Status
ES = Enrollment.Status

PAYMENT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PS.PENDING: frozenset({PS.PROCESSING, PS.COMPLETED, PS.FAILED, PS.CANCELLED}),
    PS.PROCESSING: frozenset({PS.COMPLETED, PS.FAILED, PS.CANCELLED}),
    PS.COMPLETED: frozenset({PS.REFUNDED}),
    PS.FAILED: frozenset({PS.COMPLETED}),
    PS.CANCELLED: frozenset(),
    PS.REFUNDED: frozenset(),
}

ENROLLMENT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ES.PENDING: frozenset({ES.ACTIVE, ES.CANCELLED}),
    ES.ACTIVE: frozenset({ES.COMPLETED, ES.CANCELLED, ES.REFUNDED}),
    ES.COMPLETED: frozenset({ES.REFUNDED}),
    ES.CANCELLED: frozenset(),
    ES.REFUNDED: frozenset(),
}


class StatusMachine:
    """
    Transition table bound to a model with a `status` field.

    Args:
        model: Django model class
        transitions: Mapping of status -> statuses reachable from it
        entity: Name used in error messages and logs
    """

    def __init__(self, model, transitions: Dict[str, FrozenSet[str]], entity: str) -> None:
        self.model = model
        self.transitions = transitions
        self.entity = entity

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.transitions.get(current, frozenset())

    def check(self, current: str, target: str) -> None:
        if not self.can_transition(current, target):
            raise InvalidTransitionError(self.entity, current, target)

    def sources_for(self, target: str, only_from: Optional[Iterable[str]] = None) -> List[str]:
        """Statuses from which `target` is reachable, optionally narrowed to `only_from`."""
        sources = [s for s, targets in self.transitions.items() if target in targets]
        if only_from is None:
            return sources
        only_from = list(only_from)
        for status in only_from:
            self.check(status, target)
        return [s for s in sources if s in only_from]

    def is_terminal(self, status: str) -> bool:
        return not self.transitions.get(status)

    def compare_and_set(
        self,
        pk,
        target: str,
        only_from: Optional[Iterable[str]] = None,
        **fields,
    ) -> bool:
        """
        Atomically move record `pk` to `target` if its current status allows it.

        Extra keyword arguments are written in the same UPDATE statement and
        may be `F()` expressions.

        Returns:
            True when this call performed the transition, False when the
            record was not in one of the source statuses.
        """
        sources = self.sources_for(target, only_from)
        updates = {"status": target, **fields}
        if any(f.name == "updated_at" for f in self.model._meta.concrete_fields):
            updates.setdefault("updated_at", timezone.now())
        updated = self.model.objects.filter(pk=pk, status__in=sources).update(**updates)
        if updated:
            logger.info("%s %s -> %s", self.entity, pk, target)
        else:
            logger.debug("%s %s: transition to %s not applied", self.entity, pk, target)
        return bool(updated)


payment_states = StatusMachine(Payment, PAYMENT_TRANSITIONS, "Payment")
enrollment_states = StatusMachine(Enrollment, ENROLLMENT_TRANSITIONS, "Enrollment")


def current_status(model: models.Model) -> str:
    """Reload just the status column of a model instance."""
    return type(model).objects.values_list("status", flat=True).get(pk=model.pk)
