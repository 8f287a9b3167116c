# Overview: Route lifecycle: creation, start, completion, liquidation, cancellation, reorder and GPS.

"""
Route commands

Every command below is one unit of work (run_in_transaction) that starts by
locking the route row, so two commands against the same route never
interleave. Notifications collected in the Outbox are dispatched only after
the commit.

Cancellation is an explicit procedure rather than an ORM cascade:
    1. release linked orders that were not delivered (status Pending, no route)
    2. delete chat history, evidence and stops
    3. delete the route row (purge) or mark it Canceled
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from flask import current_app

from ..extensions import db
from ..models import (
    ChatMessage,
    Delivery,
    DeliveryEvidence,
    DeliveryRoute,
    DeliveryStatus,
    Order,
    OrderStatus,
    OrderType,
    RouteStatus,
)
from ..validation import InvalidStateError, NotFoundError
from . import loyalty_service
from .concurrency import lock_for_update, run_in_transaction
from .events import (
    DELIVERY_UPDATE,
    LOCATION_UPDATE,
    ROUTE_CANCELED,
    ROUTE_COMPLETED,
    ROUTE_STARTED,
    Outbox,
    PushMessage,
)
from .lifecycle_service import OPEN_DELIVERY_STATUSES, ROUTE_ELIGIBLE_ORDER_STATUSES, require_transition
from .notification_service import dispatch
from .stop_queue import StopQueue
from .token_service import generate_token
from ..time_utils import to_utc_z, utcnow

MAX_ROUTES_LISTED = 50


@dataclass
class RouteOutcome:
    route: DeliveryRoute
    first_delivery: Delivery | None = None
    released_order_ids: list[int] = field(default_factory=list)
    forced_delivery_ids: list[int] = field(default_factory=list)
    outbox: Outbox = field(default_factory=Outbox)


# ---------------------------------------------------------------------- lookups

def get_route(route_id: int) -> DeliveryRoute:
    route = db.session.get(DeliveryRoute, route_id)
    if route is None:
        raise NotFoundError(f"Route {route_id} not found")
    return route


def get_route_by_token(driver_token: str) -> DeliveryRoute:
    route = db.session.query(DeliveryRoute).filter_by(driver_token=driver_token).first()
    if route is None:
        raise NotFoundError("Route not found")
    return route


def load_route_for_update(route_id: int) -> DeliveryRoute:
    route = lock_for_update(db.session.query(DeliveryRoute).filter_by(id=route_id)).first()
    if route is None:
        raise NotFoundError(f"Route {route_id} not found")
    return route


def list_routes(limit: int = MAX_ROUTES_LISTED) -> list[DeliveryRoute]:
    return (
        db.session.query(DeliveryRoute)
        .order_by(DeliveryRoute.created_at.desc(), DeliveryRoute.id.desc())
        .limit(min(limit, MAX_ROUTES_LISTED))
        .all()
    )


def driver_link(route: DeliveryRoute) -> str:
    return f"{current_app.config['FRONTEND_URL'].rstrip('/')}/repartidor/{route.driver_token}"


def route_to_dict(route: DeliveryRoute) -> dict:
    data = route.to_dict()
    data["driver_link"] = driver_link(route)
    data["deliveries"] = [stop.to_dict() for stop in route.deliveries]
    return data


def is_route_eligible(order: Order) -> bool:
    return (
        order.order_type == OrderType.DELIVERY
        and order.status in ROUTE_ELIGIBLE_ORDER_STATUSES
        and order.delivery_route_id is None
    )


# ------------------------------------------------------------- state machine

def create_route(order_ids: list[int], *, name: str | None = None, scheduled_date: date | None = None) -> DeliveryRoute:
    """
    Build a Pending route from the caller's stop order.

    Ineligible ids (pick-up, already routed, wrong status, unknown) are
    dropped; the survivors keep the caller's sequence as sort_order 1..N.

    Raises:
        InvalidStateError: nothing eligible remains
    """
    if not order_ids:
        raise InvalidStateError("Select at least one order")

    def _op():
        candidates = lock_for_update(db.session.query(Order).filter(Order.id.in_(order_ids))).all()
        by_id = {order.id: order for order in candidates}
        eligible = [by_id[i] for i in order_ids if i in by_id and is_route_eligible(by_id[i])]
        if not eligible:
            raise InvalidStateError("No eligible orders for a route (pick-up orders are never routed)")

        now = utcnow()
        route = DeliveryRoute(
            driver_token=generate_token(),
            status=RouteStatus.PENDING,
            name=name or f"Ruta {now:%d/%m %H:%M}",
            scheduled_date=scheduled_date or now.date(),
        )
        db.session.add(route)
        db.session.flush()

        for position, order in enumerate(eligible, start=1):
            order.status = require_transition(order.status, OrderStatus.IN_ROUTE, subject=f"Order {order.id}")
            order.delivery_route_id = route.id
            db.session.add(Delivery(
                order_id=order.id,
                delivery_route_id=route.id,
                sort_order=position,
                status=DeliveryStatus.PENDING,
            ))
        return route

    return run_in_transaction(_op)


def start_route(route_id: int) -> RouteOutcome:
    """Pending -> Active; promotes the first stop by sort order."""
    def _op():
        route = load_route_for_update(route_id)
        if route.status != RouteStatus.PENDING:
            raise InvalidStateError(f"Route {route.id} was already started or finished ({route.status.value})")

        outbox = Outbox()
        route.status = require_transition(route.status, RouteStatus.ACTIVE, subject=f"Route {route.id}")
        route.started_at = utcnow()

        queue = StopQueue.load(route, outbox)
        first = queue.promote_first()

        payload = {
            "route_id": route.id,
            "started_at": to_utc_z(route.started_at),
            "first_delivery_id": first.id if first else None,
        }
        outbox.staff(ROUTE_STARTED, payload)
        outbox.driver(route, ROUTE_STARTED, payload)
        return RouteOutcome(route=route, first_delivery=first, outbox=outbox)

    outcome = run_in_transaction(_op)
    dispatch(outcome.outbox.events)
    return outcome


def complete_if_done(queue: StopQueue) -> bool:
    """
    Active -> Completed once no stop is Pending or InTransit.

    Called after every terminal stop transition inside the same unit of
    work. A route completes exactly once: anything but Active is left alone.
    """
    route = queue.route
    if route.status != RouteStatus.ACTIVE or not queue.is_complete():
        return False

    route.status = require_transition(route.status, RouteStatus.COMPLETED, subject=f"Route {route.id}")
    route.completed_at = utcnow()
    _announce_completed(queue.outbox, route)
    return True


def _announce_completed(outbox: Outbox, route: DeliveryRoute) -> None:
    payload = {"route_id": route.id, "completed_at": to_utc_z(route.completed_at)}
    outbox.staff(
        ROUTE_COMPLETED,
        payload,
        push=PushMessage(title="Ruta completada", body=f"{route.name or 'La ruta'} terminó todas sus paradas."),
    )
    outbox.driver(route, ROUTE_COMPLETED, payload)


def liquidate_route(route_id: int) -> RouteOutcome:
    """
    Administrative force-close.

    Open stops become Delivered, still-InRoute orders become Delivered (with
    loyalty accrual) and the route is Completed. Re-running on a Completed
    route only sweeps whatever is still open.
    """
    def _op():
        route = load_route_for_update(route_id)
        if route.status == RouteStatus.CANCELED:
            raise InvalidStateError(f"Route {route.id} is canceled and cannot be liquidated")

        outbox = Outbox()
        queue = StopQueue.load(route, outbox)
        now = utcnow()

        forced = []
        for stop in queue.stops:
            if stop.status in OPEN_DELIVERY_STATUSES:
                queue.resolve(stop, DeliveryStatus.DELIVERED)
                stop.delivered_at = now
                forced.append(stop)

        orders = (
            db.session.query(Order)
            .filter(Order.delivery_route_id == route.id, Order.status == OrderStatus.IN_ROUTE)
            .all()
        )
        for order in orders:
            previous = order.status
            order.status = require_transition(previous, OrderStatus.DELIVERED, subject=f"Order {order.id}")
            loyalty_service.apply_status_change(order, previous, order.status)

        for stop in forced:
            queue.announce(stop)

        if route.status != RouteStatus.COMPLETED:
            route.status = require_transition(route.status, RouteStatus.COMPLETED, subject=f"Route {route.id}")
            route.completed_at = now
            _announce_completed(outbox, route)

        return RouteOutcome(route=route, forced_delivery_ids=[s.id for s in forced], outbox=outbox)

    outcome = run_in_transaction(_op)
    dispatch(outcome.outbox.events)
    return outcome


def cancel_route(route_id: int, *, purge: bool = True) -> RouteOutcome:
    """
    Release the route's undelivered orders back to the assignable pool.

    purge=True removes the route with its stops, evidence and chat.
    purge=False keeps the row as Canceled, with resolved stops as history.
    """
    def _op():
        route = load_route_for_update(route_id)
        if not purge and route.status not in (RouteStatus.PENDING, RouteStatus.ACTIVE):
            raise InvalidStateError(f"Route {route.id} is {route.status.value} and cannot be canceled")

        outbox = Outbox()
        released = []
        for order in db.session.query(Order).filter_by(delivery_route_id=route.id).all():
            if order.status == OrderStatus.DELIVERED:
                if purge:
                    order.delivery_route_id = None
                continue
            order.status = OrderStatus.PENDING
            order.delivery_route_id = None
            released.append(order.id)
            outbox.customer(order, DELIVERY_UPDATE, {
                "route_id": None,
                "order_id": order.id,
                "status": OrderStatus.PENDING.value,
            })

        stops = db.session.query(Delivery).filter_by(delivery_route_id=route.id).all()
        if purge:
            db.session.query(ChatMessage).filter(ChatMessage.delivery_route_id == route.id).delete(
                synchronize_session=False
            )
            purge_stops(stops)
        else:
            purge_stops([s for s in stops if s.status in OPEN_DELIVERY_STATUSES])

        payload = {"route_id": route.id, "released_order_ids": released}
        outbox.staff(ROUTE_CANCELED, payload)
        outbox.driver(route, ROUTE_CANCELED, payload)

        if purge:
            db.session.flush()
            db.session.expire(route)
            db.session.delete(route)
        else:
            route.status = require_transition(route.status, RouteStatus.CANCELED, subject=f"Route {route.id}")
            route.completed_at = utcnow()

        return RouteOutcome(route=route, released_order_ids=released, outbox=outbox)

    outcome = run_in_transaction(_op)
    dispatch(outcome.outbox.events)
    return outcome


def purge_stops(stops: list[Delivery]) -> None:
    """Delete stops with their evidence and stop-scoped chat, in the caller's unit of work."""
    stop_ids = [s.id for s in stops]
    if not stop_ids:
        return
    db.session.query(ChatMessage).filter(ChatMessage.delivery_id.in_(stop_ids)).delete(synchronize_session=False)
    for evidence in db.session.query(DeliveryEvidence).filter(DeliveryEvidence.delivery_id.in_(stop_ids)).all():
        db.session.delete(evidence)
    db.session.flush()
    for stop in stops:
        db.session.expire(stop, ["evidences"])
        db.session.delete(stop)
    db.session.flush()


def detach_order(order: Order, outbox: Outbox) -> None:
    """
    Take `order` off its route inside the caller's unit of work.

    An unresolved stop is deleted, and if it was the active one the queue
    advances. A resolved stop stays behind as route history. A Pending route
    left without stops is removed.
    """
    if order.delivery_route_id is None:
        return

    route = load_route_for_update(order.delivery_route_id)
    order.delivery_route_id = None
    queue = StopQueue.load(route, outbox)
    stop = next((s for s in queue.stops if s.order_id == order.id), None)
    if stop is None or stop.status not in OPEN_DELIVERY_STATUSES:
        return

    was_active = stop.status == DeliveryStatus.IN_TRANSIT
    payload = {"route_id": route.id, "delivery_id": stop.id, "order_id": order.id, "removed": True}
    outbox.driver(route, DELIVERY_UPDATE, payload)
    outbox.staff(DELIVERY_UPDATE, payload)

    queue.remove(stop)
    purge_stops([stop])

    if route.status == RouteStatus.ACTIVE:
        if was_active:
            queue.auto_advance(stop)
        complete_if_done(queue)
    elif route.status == RouteStatus.PENDING and not queue.stops:
        db.session.query(ChatMessage).filter(ChatMessage.delivery_route_id == route.id).delete(
            synchronize_session=False
        )
        db.session.flush()
        db.session.expire(route)
        db.session.delete(route)


def reorder_route(route_id: int, delivery_ids: list[int]) -> DeliveryRoute:
    """
    Reassign sort_order 1..N following `delivery_ids`.

    Ids that are not stops of this route are skipped. Stops missing from the
    list keep their relative order after the listed ones. No status changes.
    """
    def _op():
        route = load_route_for_update(route_id)
        if route.status not in (RouteStatus.PENDING, RouteStatus.ACTIVE):
            raise InvalidStateError(f"Route {route.id} is {route.status.value}; stops can no longer be reordered")

        queue = StopQueue.load(route, Outbox())
        by_id = {stop.id: stop for stop in queue.stops}
        listed = [by_id[i] for i in delivery_ids if i in by_id]
        listed_ids = {stop.id for stop in listed}
        rest = [stop for stop in queue.stops if stop.id not in listed_ids]

        for position, stop in enumerate(listed + rest, start=1):
            stop.sort_order = position
        return route

    route = run_in_transaction(_op)
    db.session.expire(route, ["deliveries"])
    return route


def update_location(route_id: int, latitude: float, longitude: float) -> DeliveryRoute:
    """
    Record the driver's position and fan it out.

    Written with a plain UPDATE (no version bump, no row lock): concurrent
    GPS pings are last-write-wins and never conflict with lifecycle commands.
    """
    def _op():
        route = get_route(route_id)
        now = utcnow()
        db.session.query(DeliveryRoute).filter_by(id=route_id).update(
            {
                DeliveryRoute.current_latitude: latitude,
                DeliveryRoute.current_longitude: longitude,
                DeliveryRoute.last_location_update: now,
            },
            synchronize_session=False,
        )

        outbox = Outbox()
        payload = {
            "route_id": route.id,
            "latitude": latitude,
            "longitude": longitude,
            "timestamp": to_utc_z(now),
        }
        customers = (
            db.session.query(Order.access_token, Order.client_id)
            .filter(Order.delivery_route_id == route.id)
            .all()
        )
        for customer in customers:
            outbox.customer(customer, LOCATION_UPDATE, payload)
        outbox.staff(LOCATION_UPDATE, payload)
        return route, outbox

    route, outbox = run_in_transaction(_op)
    dispatch(outbox.events)
    return route
