# Overview: Driver stop transitions (in transit, delivered, failed) with auto-advance and completion.

"""
Stop transitions

mark_in_transit   Pending -> InTransit (demotes any other active stop)
mark_delivered    Pending/InTransit -> Delivered, order Delivered, loyalty credit
mark_failed       Pending/InTransit -> NotDelivered, order NotDelivered

Resolving a stop auto-advances to the next Pending stop and completes the
route when nothing is left open, all in the same unit of work.

REPLAY: submitting the terminal status a stop already has is treated as a
retry from a flaky connection. It succeeds with replayed=True, appends any
new evidence and changes nothing else (no second loyalty credit, no
auto-advance, no notifications). This check runs before the route-Active
check so a replay after the route completed still succeeds.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..extensions import db
from ..models import Delivery, DeliveryEvidence, DeliveryRoute, DeliveryStatus, EvidenceType, OrderStatus, RouteStatus
from ..time_utils import utcnow
from ..validation import InvalidStateError
from . import loyalty_service
from .concurrency import run_in_transaction
from .events import Outbox, PushMessage
from .lifecycle_service import TERMINAL_DELIVERY_STATUSES, require_transition
from .notification_service import dispatch
from .route_service import complete_if_done, load_route_for_update
from .stop_queue import StopQueue

ORDER_STATUS_FOR = {
    DeliveryStatus.DELIVERED: OrderStatus.DELIVERED,
    DeliveryStatus.NOT_DELIVERED: OrderStatus.NOT_DELIVERED,
}

EVIDENCE_TYPE_FOR = {
    DeliveryStatus.DELIVERED: EvidenceType.DELIVERY_PROOF,
    DeliveryStatus.NOT_DELIVERED: EvidenceType.NON_DELIVERY_PROOF,
}

DELIVERED_MESSAGE = "¡Tu pedido fue entregado! Gracias por tu compra."
FAILED_MESSAGE = "No pudimos entregar tu pedido. Nos pondremos en contacto contigo."


@dataclass
class StopOutcome:
    route: DeliveryRoute
    delivery: Delivery
    next_delivery: Delivery | None = None
    demoted: list[Delivery] = field(default_factory=list)
    route_completed: bool = False
    replayed: bool = False
    points_awarded: int = 0
    evidence_added: int = 0
    outbox: Outbox = field(default_factory=Outbox)

    def to_dict(self) -> dict:
        return {
            "delivery": self.delivery.to_dict(),
            "next_delivery_id": self.next_delivery.id if self.next_delivery else None,
            "demoted_delivery_ids": [s.id for s in self.demoted],
            "route_status": self.route.status.value,
            "route_completed": self.route_completed,
            "replayed": self.replayed,
            "points_awarded": self.points_awarded,
        }


def _require_active(route: DeliveryRoute) -> None:
    if route.status != RouteStatus.ACTIVE:
        raise InvalidStateError(f"Route {route.id} is not active ({route.status.value})")


def _attach_evidence(stop: Delivery, references, evidence_type: EvidenceType) -> int:
    added = 0
    for ref in references or ():
        db.session.add(DeliveryEvidence(delivery_id=stop.id, image_path=ref, evidence_type=evidence_type))
        added += 1
    return added


def _execute(func) -> StopOutcome:
    outcome = run_in_transaction(func)
    dispatch(outcome.outbox.events)
    return outcome


def mark_in_transit(route_id: int, delivery_id: int) -> StopOutcome:
    """Make one stop the route's active stop. Already-active is a successful no-op."""
    def _op():
        route = load_route_for_update(route_id)
        _require_active(route)

        outbox = Outbox()
        queue = StopQueue.load(route, outbox)
        stop = queue.get(delivery_id)

        if stop.status == DeliveryStatus.IN_TRANSIT:
            return StopOutcome(route=route, delivery=stop, replayed=True, outbox=outbox)
        if stop.status in TERMINAL_DELIVERY_STATUSES:
            raise InvalidStateError(f"Stop {stop.id} was already resolved ({stop.status.value})")

        demoted = queue.promote(stop)
        return StopOutcome(route=route, delivery=stop, demoted=demoted, outbox=outbox)

    return _execute(_op)


def _resolve(route_id: int, delivery_id: int, target: DeliveryStatus, *, notes, reason, evidence) -> StopOutcome:
    def _op():
        route = load_route_for_update(route_id)
        outbox = Outbox()
        queue = StopQueue.load(route, outbox)
        stop = queue.get(delivery_id)
        evidence_type = EVIDENCE_TYPE_FOR[target]

        if stop.status == target:
            added = _attach_evidence(stop, evidence, evidence_type)
            return StopOutcome(route=route, delivery=stop, replayed=True, evidence_added=added, outbox=outbox)
        if stop.status in TERMINAL_DELIVERY_STATUSES:
            raise InvalidStateError(f"Stop {stop.id} is already {stop.status.value}")
        _require_active(route)

        queue.resolve(stop, target)
        stop.delivered_at = utcnow()
        if notes is not None:
            stop.notes = notes
        if target == DeliveryStatus.NOT_DELIVERED:
            stop.failure_reason = reason

        order = stop.order
        previous = order.status
        order.status = require_transition(previous, ORDER_STATUS_FOR[target], subject=f"Order {order.id}")
        points = loyalty_service.apply_status_change(order, previous, order.status)
        added = _attach_evidence(stop, evidence, evidence_type)

        if target == DeliveryStatus.DELIVERED:
            queue.announce(
                stop,
                message=DELIVERED_MESSAGE,
                push=PushMessage(title="¡Pedido entregado!", body=DELIVERED_MESSAGE, url=f"/pedido/{order.access_token}"),
            )
        else:
            queue.announce(
                stop,
                message=FAILED_MESSAGE,
                push=PushMessage(title="Entrega no realizada", body=FAILED_MESSAGE, url=f"/pedido/{order.access_token}"),
                staff_push=PushMessage(
                    title="Entrega fallida",
                    body=f"Pedido #{order.id}: {reason}",
                ),
            )

        next_stop = queue.auto_advance(stop)
        completed = complete_if_done(queue)
        return StopOutcome(
            route=route,
            delivery=stop,
            next_delivery=next_stop,
            route_completed=completed,
            points_awarded=max(points, 0),
            evidence_added=added,
            outbox=outbox,
        )

    return _execute(_op)


def mark_delivered(route_id: int, delivery_id: int, *, notes: str | None = None, evidence=()) -> StopOutcome:
    return _resolve(route_id, delivery_id, DeliveryStatus.DELIVERED, notes=notes, reason=None, evidence=evidence)


def mark_failed(route_id: int, delivery_id: int, *, reason: str, notes: str | None = None, evidence=()) -> StopOutcome:
    """Record a failed attempt. `reason` is required and stored on the stop."""
    return _resolve(route_id, delivery_id, DeliveryStatus.NOT_DELIVERED, notes=notes, reason=reason, evidence=evidence)
