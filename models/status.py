"""
Fulfillment status vocabulary and the legal transition graph.

Two vocabularies meet here: our own ``FulfillmentStatus`` and whatever
string the print broker reports. The broker's strings are folded into ours
only through ``BROKER_STATUS_MAP``; anything not in the table is an error,
never a silent no-op.

Lifecycle (happy path):
    awaiting_approval -> approved -> validating -> submitted -> confirmed
        -> in_production -> printed -> shipped -> delivered

Rollbacks:
    validating/submitting -> approved   (broker submit failed, or admin reset)
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional

from core.exceptions import UnknownBrokerStatusError


class FulfillmentStatus(str, Enum):
    """Local lifecycle status of a print order."""

    DRAFT = "draft"
    VALIDATING = "validating"
    VALIDATION_FAILED = "validation_failed"
    READY_TO_SUBMIT = "ready_to_submit"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    ON_HOLD = "on_hold"
    CONFIRMED = "confirmed"
    IN_PRODUCTION = "in_production"
    PRINTED = "printed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"


S = FulfillmentStatus

TERMINAL_STATUSES: FrozenSet[FulfillmentStatus] = frozenset({
    S.DELIVERED,
    S.CANCELLED,
    S.FAILED,
})

# Everything up to and including broker confirmation
CANCELLABLE_STATUSES: FrozenSet[FulfillmentStatus] = frozenset({
    S.DRAFT,
    S.VALIDATING,
    S.VALIDATION_FAILED,
    S.READY_TO_SUBMIT,
    S.AWAITING_APPROVAL,
    S.APPROVED,
    S.SUBMITTING,
    S.SUBMITTED,
    S.ON_HOLD,
    S.CONFIRMED,
})

APPROVABLE_STATUSES: FrozenSet[FulfillmentStatus] = frozenset({
    S.AWAITING_APPROVAL,
    S.READY_TO_SUBMIT,
})

CONFIRMABLE_STATUSES: FrozenSet[FulfillmentStatus] = frozenset({
    S.SUBMITTED,
    S.ON_HOLD,
})

# Orders stuck mid-flight that an admin may push back to approved
RESETTABLE_STATUSES: FrozenSet[FulfillmentStatus] = frozenset({
    S.VALIDATING,
    S.SUBMITTING,
    S.VALIDATION_FAILED,
})

REVALIDATABLE_STATUSES: FrozenSet[FulfillmentStatus] = frozenset({
    S.DRAFT,
    S.VALIDATION_FAILED,
    S.READY_TO_SUBMIT,
    S.AWAITING_APPROVAL,
})

# Statuses the broker owns once an order has been handed over
BROKER_OWNED_STATUSES: FrozenSet[FulfillmentStatus] = frozenset({
    S.SUBMITTED,
    S.ON_HOLD,
    S.CONFIRMED,
    S.IN_PRODUCTION,
    S.PRINTED,
    S.SHIPPED,
    S.DELIVERED,
})


ALLOWED_TRANSITIONS: Dict[FulfillmentStatus, FrozenSet[FulfillmentStatus]] = {
    S.DRAFT: frozenset({S.VALIDATING, S.AWAITING_APPROVAL, S.CANCELLED}),
    S.VALIDATING: frozenset({
        S.VALIDATION_FAILED, S.READY_TO_SUBMIT, S.SUBMITTED, S.APPROVED, S.CANCELLED, S.FAILED,
    }),
    S.VALIDATION_FAILED: frozenset({S.VALIDATING, S.READY_TO_SUBMIT, S.APPROVED, S.CANCELLED}),
    S.READY_TO_SUBMIT: frozenset({S.VALIDATING, S.AWAITING_APPROVAL, S.APPROVED, S.CANCELLED}),
    S.AWAITING_APPROVAL: frozenset({S.VALIDATING, S.APPROVED, S.CANCELLED}),
    S.APPROVED: frozenset({S.VALIDATING, S.SUBMITTING, S.CANCELLED}),
    S.SUBMITTING: frozenset({S.SUBMITTED, S.APPROVED, S.CANCELLED, S.FAILED}),
    S.SUBMITTED: frozenset({
        S.ON_HOLD, S.CONFIRMED, S.IN_PRODUCTION, S.PRINTED, S.SHIPPED, S.DELIVERED, S.CANCELLED, S.FAILED,
    }),
    S.ON_HOLD: frozenset({
        S.SUBMITTED, S.CONFIRMED, S.IN_PRODUCTION, S.PRINTED, S.SHIPPED, S.DELIVERED, S.CANCELLED, S.FAILED,
    }),
    S.CONFIRMED: frozenset({
        S.ON_HOLD, S.IN_PRODUCTION, S.PRINTED, S.SHIPPED, S.DELIVERED, S.CANCELLED, S.FAILED,
    }),
    S.IN_PRODUCTION: frozenset({S.PRINTED, S.SHIPPED, S.DELIVERED, S.FAILED}),
    S.PRINTED: frozenset({S.SHIPPED, S.DELIVERED, S.FAILED}),
    S.SHIPPED: frozenset({S.DELIVERED, S.FAILED}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
    S.FAILED: frozenset(),
}


def can_transition(current: FulfillmentStatus, target: FulfillmentStatus) -> bool:
    """True if ``current -> target`` is an edge of the transition graph."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def parse_status(value: Optional[str]) -> FulfillmentStatus:
    """Read a stored status string. Unknown values raise ValueError."""
    return FulfillmentStatus(value or S.DRAFT.value)


# =============================================================================
# BROKER VOCABULARY
# =============================================================================

BROKER_STATUS_MAP: Dict[str, FulfillmentStatus] = {
    "INIT": S.SUBMITTED,
    "SUBMITTED": S.SUBMITTED,
    "PENDING": S.SUBMITTED,
    "RECEIVED": S.SUBMITTED,
    "CONFIRMED": S.CONFIRMED,
    "ACCEPTED": S.CONFIRMED,
    "ON_HOLD": S.ON_HOLD,
    "ONHOLD": S.ON_HOLD,
    "IN_PRODUCTION": S.IN_PRODUCTION,
    "INPRODUCTION": S.IN_PRODUCTION,
    "PRINTING": S.IN_PRODUCTION,
    "PRINTED": S.PRINTED,
    "SHIPPED": S.SHIPPED,
    "DISPATCHED": S.SHIPPED,
    "DELIVERED": S.DELIVERED,
    "CANCELLED": S.CANCELLED,
    "CANCELED": S.CANCELLED,
}


def normalize_broker_status(broker_status: str) -> str:
    """Upper-case and underscore a broker status ("in production" -> "IN_PRODUCTION")."""
    return broker_status.strip().upper().replace("-", "_").replace(" ", "_")


def map_broker_status(broker_status: Optional[str]) -> FulfillmentStatus:
    """
    Translate a broker-reported status to the local vocabulary.

    Args:
        broker_status: Status string exactly as the broker returned it

    Returns:
        The matching FulfillmentStatus

    Raises:
        UnknownBrokerStatusError: If the status is empty or not in the table
    """
    if not broker_status:
        raise UnknownBrokerStatusError(str(broker_status))
    mapped = BROKER_STATUS_MAP.get(normalize_broker_status(broker_status))
    if mapped is None:
        raise UnknownBrokerStatusError(broker_status)
    return mapped
