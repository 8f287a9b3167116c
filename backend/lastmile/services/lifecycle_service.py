# Overview: Transition tables for orders, routes and stops; the single place that says which moves are legal.

"""
Delivery Lifecycle Rules

================================================================================
STATE MACHINES
================================================================================

STOP (Delivery):
    Pending -> InTransit -> {Delivered, NotDelivered}
    InTransit -> Pending           (demotion when another stop becomes active)
    Pending -> {Delivered, NotDelivered}   (stop resolved without being active)

    Delivered / NotDelivered are terminal.

ROUTE (DeliveryRoute):
    Pending -> Active -> Completed
    Pending -> Completed           (liquidation of a route never started)
    {Pending, Active} -> Canceled

    Completed / Canceled are terminal.

ORDER (system-driven moves only):
    {Pending, Confirmed, Shipped} -> InRoute      (route assignment)
    InRoute -> {Delivered, NotDelivered}          (stop resolved)
    {InRoute, NotDelivered} -> Pending            (released from a route)
    {Pending, Postponed} -> Confirmed             (customer confirmation)

    Staff may also set a status directly; see ADMIN_SETTABLE_ORDER_STATUSES.

RULES:
1. A same-state "transition" is a no-op; callers decide whether that is a
   replay to acknowledge or a request to reject.
2. Everything not listed is rejected with InvalidStateError.
================================================================================
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping

from ..models import DeliveryStatus, OrderStatus, RouteStatus
from ..validation import InvalidStateError


DELIVERY_TRANSITIONS: Mapping[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({
        DeliveryStatus.IN_TRANSIT,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.NOT_DELIVERED,
    }),
    DeliveryStatus.IN_TRANSIT: frozenset({
        DeliveryStatus.PENDING,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.NOT_DELIVERED,
    }),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.NOT_DELIVERED: frozenset(),
}

ROUTE_TRANSITIONS: Mapping[RouteStatus, frozenset[RouteStatus]] = {
    RouteStatus.PENDING: frozenset({RouteStatus.ACTIVE, RouteStatus.COMPLETED, RouteStatus.CANCELED}),
    RouteStatus.ACTIVE: frozenset({RouteStatus.COMPLETED, RouteStatus.CANCELED}),
    RouteStatus.COMPLETED: frozenset(),
    RouteStatus.CANCELED: frozenset(),
}

ORDER_TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.IN_ROUTE, OrderStatus.CONFIRMED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.IN_ROUTE}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.IN_ROUTE}),
    OrderStatus.POSTPONED: frozenset({OrderStatus.CONFIRMED}),
    OrderStatus.IN_ROUTE: frozenset({OrderStatus.DELIVERED, OrderStatus.NOT_DELIVERED, OrderStatus.PENDING}),
    OrderStatus.NOT_DELIVERED: frozenset({OrderStatus.PENDING}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
}

# Orders in these states may be put on a new route
ROUTE_ELIGIBLE_ORDER_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.SHIPPED})

# Staff can set these directly; InRoute is only ever reached through route creation
ADMIN_SETTABLE_ORDER_STATUSES = frozenset(set(OrderStatus) - {OrderStatus.IN_ROUTE})

TERMINAL_DELIVERY_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.NOT_DELIVERED})
OPEN_DELIVERY_STATUSES = frozenset({DeliveryStatus.PENDING, DeliveryStatus.IN_TRANSIT})


def _table_for(current: Enum) -> Mapping:
    if isinstance(current, DeliveryStatus):
        return DELIVERY_TRANSITIONS
    if isinstance(current, RouteStatus):
        return ROUTE_TRANSITIONS
    if isinstance(current, OrderStatus):
        return ORDER_TRANSITIONS
    raise TypeError(f"No transition table for {type(current).__name__}")


def can_transition(current: Enum, target: Enum) -> bool:
    """
    Check a move against its state machine.

    Same-state moves are allowed (no-op); the caller handles replays.
    """
    if type(current) is not type(target):
        raise TypeError("current and target must belong to the same state machine")
    if current == target:
        return True
    return target in _table_for(current)[current]


def require_transition(current: Enum, target: Enum, *, subject: str):
    """
    Return `target` if the move is legal, otherwise raise InvalidStateError.

    Args:
        current: present state
        target: requested state
        subject: human label used in the error ("Stop 12", "Route 3")
    """
    if not can_transition(current, target):
        raise InvalidStateError(
            f"{subject} is {current.value}; cannot move to {target.value}"
        )
    return target


def is_terminal(status: Enum) -> bool:
    return not _table_for(status)[status]


def parse_status(enum_cls, raw: str | None, *, field: str = "status"):
    """Case-insensitive lookup by value; returns None for empty input."""
    if raw is None or str(raw).strip() == "":
        return None
    wanted = str(raw).strip().lower()
    for member in enum_cls:
        if member.value.lower() == wanted:
            return member
    raise InvalidStateError(
        f"Invalid {field} '{raw}'. Must be one of: {', '.join(m.value for m in enum_cls)}"
    )
