# Overview: Route-scoped stop queue; owns the single-active-stop invariant and next-stop selection.

"""
StopQueue wraps one route and its stops (loaded once per unit of work) and is
the only code that moves a stop into or out of InTransit.

INVARIANT: count(stops where status == InTransit) <= 1, checked after every
promotion. Promotion demotes any other InTransit stop back to Pending inside
the same call, so no caller can observe two active stops.

Next-stop rule (auto-advance): among Pending stops, the smallest sort_order
strictly greater than the stop just resolved; otherwise the smallest Pending
sort_order overall (covers out-of-order completion). The chosen stop is
promoted like any other, so a stop still InTransit goes back to Pending.
"""

from __future__ import annotations

from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Delivery, DeliveryRoute, DeliveryStatus, Order
from ..time_utils import to_utc_z
from ..validation import NotFoundError
from .events import DELIVERY_UPDATE, Outbox, PushMessage
from .lifecycle_service import OPEN_DELIVERY_STATUSES, require_transition

IN_TRANSIT_CUSTOMER_STATUS = "InTransit"

ON_THE_WAY_MESSAGE = "¡El repartidor va en camino hacia ti!"
BACK_IN_QUEUE_MESSAGE = "Tu pedido sigue en ruta; el repartidor atenderá otra parada primero."


def customer_facing_status(order: Order, stop: Delivery | None = None) -> str:
    """Order status as the customer sees it: an active stop reads InTransit."""
    if stop is not None and stop.status == DeliveryStatus.IN_TRANSIT:
        return IN_TRANSIT_CUSTOMER_STATUS
    return order.status.value


class StopQueue:
    def __init__(self, route: DeliveryRoute, stops: list[Delivery], outbox: Outbox):
        self.route = route
        self.stops = sorted(stops, key=lambda s: (s.sort_order, s.id or 0))
        self.outbox = outbox

    @classmethod
    def load(cls, route: DeliveryRoute, outbox: Outbox) -> "StopQueue":
        stops = (
            db.session.query(Delivery)
            .options(selectinload(Delivery.order))
            .filter(Delivery.delivery_route_id == route.id)
            .order_by(Delivery.sort_order, Delivery.id)
            .all()
        )
        return cls(route, stops, outbox)

    # ------------------------------------------------------------------ queries

    def get(self, delivery_id: int) -> Delivery:
        for stop in self.stops:
            if stop.id == delivery_id:
                return stop
        raise NotFoundError(f"Stop {delivery_id} not found on route {self.route.id}")

    def stop_for_order(self, order_id: int) -> Delivery | None:
        for stop in self.stops:
            if stop.order_id == order_id:
                return stop
        return None

    def active(self) -> list[Delivery]:
        return [s for s in self.stops if s.status == DeliveryStatus.IN_TRANSIT]

    def pending(self) -> list[Delivery]:
        return [s for s in self.stops if s.status == DeliveryStatus.PENDING]

    def next_after(self, sort_order: int) -> Delivery | None:
        pending = self.pending()
        for stop in pending:
            if stop.sort_order > sort_order:
                return stop
        return pending[0] if pending else None

    def is_complete(self) -> bool:
        return not any(s.status in OPEN_DELIVERY_STATUSES for s in self.stops)

    def deliveries_ahead(self, stop: Delivery) -> int:
        return sum(
            1 for s in self.stops
            if s.sort_order < stop.sort_order and s.status in OPEN_DELIVERY_STATUSES
        )

    # ---------------------------------------------------------------- mutations

    def promote(self, target: Delivery) -> list[Delivery]:
        """
        Make `target` the route's single InTransit stop.

        Returns the stops demoted back to Pending. Raises InvalidStateError
        if `target` is terminal.
        """
        require_transition(target.status, DeliveryStatus.IN_TRANSIT, subject=f"Stop {target.id}")

        demoted = []
        for stop in self.stops:
            if stop is not target and stop.status == DeliveryStatus.IN_TRANSIT:
                stop.status = require_transition(stop.status, DeliveryStatus.PENDING, subject=f"Stop {stop.id}")
                demoted.append(stop)

        target.status = DeliveryStatus.IN_TRANSIT
        self._check_single_active()

        self.announce(
            target,
            message=ON_THE_WAY_MESSAGE,
            push=PushMessage(
                title="¡Tu pedido va en camino!",
                body=ON_THE_WAY_MESSAGE,
                url=f"/pedido/{target.order.access_token}",
            ),
        )
        for stop in demoted:
            self.announce(stop, message=BACK_IN_QUEUE_MESSAGE)
        return demoted

    def promote_first(self) -> Delivery | None:
        pending = self.pending()
        if not pending:
            return None
        self.promote(pending[0])
        return pending[0]

    def auto_advance(self, resolved: Delivery) -> Delivery | None:
        """
        Promote the stop that follows `resolved`, demoting any stop still in
        transit. Returns None when nothing is pending.
        """
        nxt = self.next_after(resolved.sort_order)
        if nxt is not None:
            self.promote(nxt)
        return nxt

    def resolve(self, stop: Delivery, status: DeliveryStatus) -> None:
        stop.status = require_transition(stop.status, status, subject=f"Stop {stop.id}")

    def remove(self, stop: Delivery) -> None:
        self.stops = [s for s in self.stops if s is not stop]

    def announce(
        self,
        stop: Delivery,
        *,
        message: str | None = None,
        push: PushMessage | None = None,
        staff_push: PushMessage | None = None,
    ) -> None:
        """Emit one DeliveryUpdate for `stop` to its customer, the route room and staff."""
        payload = {
            "route_id": self.route.id,
            "delivery_id": stop.id,
            "order_id": stop.order_id,
            "sort_order": stop.sort_order,
            "status": customer_facing_status(stop.order, stop),
            "delivery_status": stop.status.value,
        }
        if stop.delivered_at is not None:
            payload["delivered_at"] = to_utc_z(stop.delivered_at)
        if stop.failure_reason:
            payload["failure_reason"] = stop.failure_reason
        customer_payload = dict(payload, message=message) if message else payload

        self.outbox.customer(stop.order, DELIVERY_UPDATE, customer_payload, push=push)
        self.outbox.driver(self.route, DELIVERY_UPDATE, payload)
        self.outbox.staff(DELIVERY_UPDATE, payload, push=staff_push)

    def _check_single_active(self) -> None:
        active = self.active()
        if len(active) > 1:
            raise RuntimeError(
                f"Route {self.route.id} has {len(active)} stops in transit: "
                f"{', '.join(str(s.id) for s in active)}"
            )
