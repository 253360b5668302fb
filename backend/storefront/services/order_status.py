# Overview: Order status state machine; legal transitions and the role allowlist per transition.

"""
Storefront Order Status Machine

================================================================================
STATE MACHINE:
    PENDING -> ACCEPTED -> READY_FOR_PICKUP -> PICKED_UP -> ARRIVED -> DELIVERED
       |          |              |                |           |
       +----------+--------------+----------------+-----------+--> CANCELLED
    PENDING -> REJECTED | FAILED
    RETURN  -> RETURNED

    Terminal: DELIVERED, CANCELLED, REJECTED, RETURNED, FAILED

RULES:
1. ORDER_STATUS_TRANSITIONS is the only adjacency map; a pair missing from it
   is an IllegalTransitionError for every role.
2. TRANSITION_ROLES is the only authorization source; a role missing from a
   pair's set is a ForbiddenError. SUPER_ADMIN has no bypass, it is listed
   where it is allowed.
3. USER never appears in TRANSITION_ROLES.
4. The legality check runs before the role check.
================================================================================
"""

from __future__ import annotations

import logging

from ..errors import ForbiddenError, IllegalTransitionError, ValidationError
from ..extensions import db
from ..models import Order, OrderStatusHistory
from ..models.auth import ROLE_RIDER, ROLE_SUPER_ADMIN, ROLE_VENDOR_ADMIN

logger = logging.getLogger(__name__)


STATUS_PENDING = "PENDING"
STATUS_ACCEPTED = "ACCEPTED"
STATUS_READY_FOR_PICKUP = "READY_FOR_PICKUP"
STATUS_PICKED_UP = "PICKED_UP"
STATUS_ARRIVED = "ARRIVED"
STATUS_DELIVERED = "DELIVERED"
STATUS_CANCELLED = "CANCELLED"
STATUS_REJECTED = "REJECTED"
STATUS_RETURN = "RETURN"
STATUS_RETURNED = "RETURNED"
STATUS_FAILED = "FAILED"

VALID_ORDER_STATUSES = frozenset({
    STATUS_PENDING,
    STATUS_ACCEPTED,
    STATUS_READY_FOR_PICKUP,
    STATUS_PICKED_UP,
    STATUS_ARRIVED,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
    STATUS_REJECTED,
    STATUS_RETURN,
    STATUS_RETURNED,
    STATUS_FAILED,
})

ORDER_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset({STATUS_ACCEPTED, STATUS_CANCELLED, STATUS_REJECTED, STATUS_FAILED}),
    STATUS_ACCEPTED: frozenset({STATUS_READY_FOR_PICKUP, STATUS_CANCELLED}),
    STATUS_READY_FOR_PICKUP: frozenset({STATUS_PICKED_UP, STATUS_CANCELLED}),
    STATUS_PICKED_UP: frozenset({STATUS_ARRIVED, STATUS_DELIVERED, STATUS_CANCELLED}),
    STATUS_ARRIVED: frozenset({STATUS_DELIVERED, STATUS_CANCELLED}),
    STATUS_RETURN: frozenset({STATUS_RETURNED}),
    STATUS_DELIVERED: frozenset(),
    STATUS_CANCELLED: frozenset(),
    STATUS_REJECTED: frozenset(),
    STATUS_RETURNED: frozenset(),
    STATUS_FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ORDER_STATUS_TRANSITIONS.items() if not targets)

_VENDOR = frozenset({ROLE_VENDOR_ADMIN, ROLE_SUPER_ADMIN})
_RIDER = frozenset({ROLE_RIDER, ROLE_SUPER_ADMIN})

TRANSITION_ROLES: dict[tuple[str, str], frozenset[str]] = {
    (STATUS_PENDING, STATUS_ACCEPTED): _VENDOR,
    (STATUS_PENDING, STATUS_CANCELLED): _VENDOR,
    (STATUS_PENDING, STATUS_REJECTED): _VENDOR,
    (STATUS_PENDING, STATUS_FAILED): _VENDOR,
    (STATUS_ACCEPTED, STATUS_READY_FOR_PICKUP): _VENDOR,
    (STATUS_ACCEPTED, STATUS_CANCELLED): _VENDOR,
    (STATUS_READY_FOR_PICKUP, STATUS_PICKED_UP): _RIDER,
    (STATUS_READY_FOR_PICKUP, STATUS_CANCELLED): _VENDOR,
    (STATUS_PICKED_UP, STATUS_ARRIVED): _RIDER,
    (STATUS_PICKED_UP, STATUS_DELIVERED): _RIDER,
    (STATUS_PICKED_UP, STATUS_CANCELLED): _RIDER,
    (STATUS_ARRIVED, STATUS_DELIVERED): _RIDER,
    (STATUS_ARRIVED, STATUS_CANCELLED): _RIDER,
    (STATUS_RETURN, STATUS_RETURNED): _VENDOR,
}

# Entering one of these gives back the stock the order took at placement
STOCK_RESTORING_STATUSES = frozenset({STATUS_CANCELLED, STATUS_REJECTED, STATUS_RETURNED, STATUS_FAILED})

# Entering one of these on a PAID order opens a refund
REFUNDABLE_STATUSES = STOCK_RESTORING_STATUSES

PICKUP_OPEN = "OPEN"
PICKUP_ACCEPT = "ACCEPT"

REFUND_NONE = "NONE"
REFUND_PENDING = "PENDING"


def validate_status(status: str) -> None:
    if status not in VALID_ORDER_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_ORDER_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """True when to_status is in from_status's allowed-target set. Role is not considered."""
    return to_status in ORDER_STATUS_TRANSITIONS.get(from_status, frozenset())


def allowed_roles(from_status: str, to_status: str) -> frozenset[str]:
    return TRANSITION_ROLES.get((from_status, to_status), frozenset())


def check_transition(from_status: str, to_status: str, actor_role: str | None) -> None:
    """
    Raise unless actor_role may move an order from from_status to to_status.

    IllegalTransitionError wins over ForbiddenError: a pair outside the table
    is illegal whatever the role.
    """
    validate_status(to_status)

    if not can_transition(from_status, to_status):
        raise IllegalTransitionError(
            f"Cannot transition order from {from_status} to {to_status}",
            details={"from": from_status, "to": to_status},
        )

    if actor_role not in allowed_roles(from_status, to_status):
        raise ForbiddenError(
            f"Role {actor_role} may not move an order from {from_status} to {to_status}",
            details={"from": from_status, "to": to_status, "role": actor_role},
        )


def transition(
    order: Order,
    target_status: str,
    *,
    actor_id: int,
    actor_role: str,
    notes: str | None = None,
) -> OrderStatusHistory:
    """
    Apply a checked status change to a loaded order.

    Mutates the instance and appends a history row; the caller flushes and
    commits. The order's version_id_col makes that flush a compare-and-swap
    on the stamp the caller loaded it with.

    Side fields:
    - RIDER actor: rider_id = actor, pickup_status = ACCEPT
    - PAID order entering a refundable status: refund opened for the full
      final amount
    """
    previous = order.status
    check_transition(previous, target_status, actor_role)

    order.status = target_status
    order.updated_by = actor_id

    if actor_role == ROLE_RIDER:
        order.rider_id = actor_id
        order.pickup_status = PICKUP_ACCEPT

    if target_status in REFUNDABLE_STATUSES and order.payment_status == "PAID":
        order.refund_status = REFUND_PENDING
        order.refund_amount_cents = order.final_amount_cents

    history = OrderStatusHistory(
        order_id=order.id,
        status=target_status,
        previous_status=previous,
        changed_by=actor_id,
        changed_by_role=actor_role,
        notes=notes,
    )
    db.session.add(history)

    logger.info(
        "Order %s status %s -> %s by user=%s role=%s",
        order.id,
        previous,
        target_status,
        actor_id,
        actor_role,
    )
    return history
