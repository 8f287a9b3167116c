# Overview: Order intake, admin edits, deletion and the customer-facing order view.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import (
    Client,
    Delivery,
    DeliveryRoute,
    DeliveryStatus,
    LoyaltyTransaction,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    RouteStatus,
)
from ..time_utils import hours_from_now, is_past, parse_iso_datetime, to_utc_z
from ..validation import (
    ExpiredError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    coerce_int,
    enforce_amount_cents,
    optional_text,
    require_coordinates,
    require_text,
)
from . import loyalty_service
from .concurrency import lock_for_update, run_in_transaction
from .events import ORDER_CONFIRMED, Outbox
from .lifecycle_service import (
    ADMIN_SETTABLE_ORDER_STATUSES,
    OPEN_DELIVERY_STATUSES,
    parse_status,
    require_transition,
)
from .notification_service import dispatch
from .route_service import detach_order, purge_stops
from .settings_service import get_settings
from .stop_queue import StopQueue, customer_facing_status
from .token_service import generate_token

MAX_ITEMS_PER_ORDER = 200
CONFIRMABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.POSTPONED})
CUSTOMER_CHAT_CLOSED_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.NOT_DELIVERED, OrderStatus.CANCELED})


@dataclass
class OrderOutcome:
    order: Order
    merged: bool = False
    replayed: bool = False
    outbox: Outbox = field(default_factory=Outbox)


# ---------------------------------------------------------------------- lookups

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _load_order_for_update(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def get_order_by_token(access_token: str) -> Order:
    """
    Resolve a customer link.

    Raises:
        NotFoundError: unknown token
        ExpiredError: token known but past expires_at (checked independently
            of delivery progress)
    """
    order = db.session.query(Order).filter_by(access_token=access_token).first()
    if order is None:
        raise NotFoundError("Order not found")
    if is_past(order.expires_at):
        raise ExpiredError("This link has expired")
    return order


def list_orders(*, status: str | None = None, client_id: int | None = None) -> list[Order]:
    query = db.session.query(Order)
    wanted = parse_status(OrderStatus, status)
    if wanted is not None:
        query = query.filter(Order.status == wanted)
    if client_id is not None:
        query = query.filter(Order.client_id == client_id)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def dashboard() -> dict:
    def count_orders(status):
        return db.session.query(func.count(Order.id)).filter(Order.status == status).scalar()

    revenue = (
        db.session.query(func.coalesce(func.sum(Order.total_cents), 0))
        .filter(Order.status == OrderStatus.DELIVERED)
        .scalar()
    )
    return {
        "total_clients": db.session.query(func.count(Client.id)).scalar(),
        "total_orders": db.session.query(func.count(Order.id)).scalar(),
        "pending_orders": count_orders(OrderStatus.PENDING),
        "delivered_orders": count_orders(OrderStatus.DELIVERED),
        "not_delivered_orders": count_orders(OrderStatus.NOT_DELIVERED),
        "active_routes": (
            db.session.query(func.count(DeliveryRoute.id))
            .filter(DeliveryRoute.status == RouteStatus.ACTIVE)
            .scalar()
        ),
        "delivered_revenue_cents": int(revenue or 0),
    }


# --------------------------------------------------------------------- intake

def _parse_items(raw) -> list[dict]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")
    if len(raw) > MAX_ITEMS_PER_ORDER:
        raise ValidationError(f"An order cannot have more than {MAX_ITEMS_PER_ORDER} items")

    items = []
    for line in raw:
        if not isinstance(line, dict):
            raise ValidationError("Each item must be an object")
        quantity = coerce_int(line.get("quantity", 1), "quantity")
        if quantity <= 0:
            raise ValidationError("quantity must be > 0")
        unit_price = enforce_amount_cents(
            coerce_int(line.get("unit_price_cents"), "unit_price_cents"),
            "unit_price_cents",
        )
        items.append({
            "product_name": require_text(line.get("product_name"), "product_name", max_length=300),
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "line_total_cents": enforce_amount_cents(quantity * unit_price, "line_total_cents"),
        })
    return items


def _upsert_client(data: dict, name: str) -> Client:
    phone = optional_text(data.get("client_phone"), "client_phone", max_length=20)
    address = optional_text(data.get("client_address"), "client_address", max_length=500)
    category = optional_text(data.get("client_type"), "client_type", max_length=32)
    coordinates = None
    if data.get("latitude") is not None or data.get("lat") is not None:
        coordinates = require_coordinates(data)

    client = db.session.query(Client).filter(func.lower(Client.name) == name.lower()).first()
    if client is None:
        client = Client(
            name=name,
            phone=phone,
            address=address,
            category=category or current_app.config["NEW_CLIENT_CATEGORY"],
        )
        db.session.add(client)
    else:
        if phone:
            client.phone = phone
        if address:
            client.address = address
        if category:
            client.category = category
    if coordinates is not None:
        client.latitude, client.longitude = coordinates
    db.session.flush()
    return client


def create_manual_order(data: dict) -> OrderOutcome:
    """
    Register an order typed in by staff.

    The client is matched by name (case-insensitive) and created when new.
    Lines are merged into the client's open Pending order when there is one;
    otherwise a new order gets its access token and link expiry.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    name = require_text(data.get("client_name"), "client_name", max_length=200)
    items = _parse_items(data.get("items"))
    order_type = parse_status(OrderType, data.get("order_type"), field="order_type") or OrderType.DELIVERY

    def _op():
        settings = get_settings()
        client = _upsert_client(data, name)

        order = (
            db.session.query(Order)
            .filter_by(client_id=client.id, status=OrderStatus.PENDING)
            .order_by(Order.id)
            .first()
        )
        merged = order is not None
        if order is None:
            order = Order(
                client_id=client.id,
                access_token=generate_token(),
                order_type=order_type,
                status=OrderStatus.PENDING,
                shipping_cost_cents=0 if order_type == OrderType.PICKUP else settings.default_shipping_cost_cents,
                expires_at=hours_from_now(settings.link_expiration_hours),
            )
            db.session.add(order)
        elif order_type == OrderType.PICKUP:
            order.order_type = OrderType.PICKUP

        for line in items:
            order.items.append(OrderItem(**line))
        order.recalculate_totals()
        db.session.flush()
        return OrderOutcome(order=order, merged=merged)

    return run_in_transaction(_op)


# ----------------------------------------------------------------- admin edits

def _has_open_stop(order: Order) -> bool:
    if order.delivery_route_id is None:
        return False
    stop = (
        db.session.query(Delivery)
        .filter_by(order_id=order.id, delivery_route_id=order.delivery_route_id)
        .first()
    )
    return stop is not None and stop.status in OPEN_DELIVERY_STATUSES


def update_order_status(order_id: int, data: dict) -> OrderOutcome:
    """
    Staff override of status, type and postponement.

    - InRoute is owned by route assignment and cannot be set here.
    - Delivered/NotDelivered are refused while the order's stop is still
      open; the driver (or a liquidation) resolves those.
    - Any other status, or switching to PickUp, takes the order off its
      route (see route_service.detach_order).
    - Loyalty follows loyalty_service.apply_status_change.
    """
    if not isinstance(data, dict) or not data:
        raise ValidationError("No data received")
    new_type = parse_status(OrderType, data.get("order_type"), field="order_type")
    new_status = parse_status(OrderStatus, data.get("status"))
    if new_status is not None and new_status not in ADMIN_SETTABLE_ORDER_STATUSES:
        raise InvalidStateError(f"{new_status.value} is set by route assignment only")

    def _op():
        order = _load_order_for_update(order_id)
        outbox = Outbox()
        previous = order.status
        release = False

        if new_type is not None and new_type != order.order_type:
            order.order_type = new_type
            if new_type == OrderType.PICKUP:
                order.shipping_cost_cents = 0
                release = True
            else:
                order.shipping_cost_cents = get_settings().default_shipping_cost_cents

        if new_status is not None and new_status != previous:
            if new_status in (OrderStatus.DELIVERED, OrderStatus.NOT_DELIVERED):
                if _has_open_stop(order):
                    raise InvalidStateError(
                        f"Order {order.id} still has an open stop; resolve it from the route"
                    )
            else:
                release = True
            order.status = new_status

        if release:
            detach_order(order, outbox)
            if order.status == OrderStatus.IN_ROUTE:
                order.status = OrderStatus.PENDING

        if "postponed_at" in data:
            order.postponed_at = parse_iso_datetime(data.get("postponed_at"))
        if "postponed_note" in data:
            order.postponed_note = optional_text(data.get("postponed_note"), "postponed_note", max_length=500)

        order.recalculate_totals()
        loyalty_service.apply_status_change(order, previous, order.status)
        return OrderOutcome(order=order, outbox=outbox)

    outcome = run_in_transaction(_op)
    dispatch(outcome.outbox.events)
    return outcome


def remove_item(order_id: int, item_id: int) -> Order:
    def _op():
        order = _load_order_for_update(order_id)
        item = next((i for i in order.items if i.id == item_id), None)
        if item is None:
            raise NotFoundError(f"Item {item_id} is not part of order {order_id}")

        order.items.remove(item)
        order.recalculate_totals()
        if not order.items and order.delivery_route_id is None and order.status != OrderStatus.DELIVERED:
            order.status = OrderStatus.PENDING
        return order

    return run_in_transaction(_op)


def delete_order(order_id: int) -> None:
    """
    Remove an order, its stops and their evidence and chat.

    Ledger rows keep their points; only their order link is cleared.
    """
    def _op():
        order = _load_order_for_update(order_id)
        outbox = Outbox()
        detach_order(order, outbox)

        history = db.session.query(Delivery).filter_by(order_id=order.id).all()
        purge_stops(history)

        db.session.query(LoyaltyTransaction).filter_by(order_id=order.id).update(
            {LoyaltyTransaction.order_id: None},
            synchronize_session=False,
        )
        db.session.flush()
        db.session.expire(order, ["deliveries"])
        db.session.delete(order)
        return outbox

    outbox = run_in_transaction(_op)
    dispatch(outbox.events)


# --------------------------------------------------------------- customer side

def get_customer_view(access_token: str) -> dict:
    order = get_order_by_token(access_token)
    client = order.client
    route = order.delivery_route
    queue = StopQueue.load(route, Outbox()) if route is not None else None
    stop = queue.stop_for_order(order.id) if queue is not None else None

    driver_location = None
    if route is not None and route.status == RouteStatus.ACTIVE and route.current_latitude is not None:
        driver_location = {
            "latitude": route.current_latitude,
            "longitude": route.current_longitude,
            "last_update": to_utc_z(route.last_location_update),
        }

    queue_position = total_deliveries = deliveries_ahead = None
    if stop is not None:
        queue_position = stop.sort_order
        total_deliveries = len(queue.stops)
        deliveries_ahead = queue.deliveries_ahead(stop)

    return {
        "order_id": order.id,
        "client_id": order.client_id,
        "client_name": client.name if client else "Cliente",
        "client_type": (client.category if client and client.category else current_app.config["NEW_CLIENT_CATEGORY"]),
        "client_address": client.address if client else None,
        "client_latitude": client.latitude if client else None,
        "client_longitude": client.longitude if client else None,
        "items": [item.to_dict() for item in order.items],
        "order_type": order.order_type.value,
        "subtotal_cents": order.subtotal_cents,
        "shipping_cost_cents": order.shipping_cost_cents,
        "total_cents": order.total_cents,
        "status": customer_facing_status(order, stop),
        "driver_location": driver_location,
        "queue_position": queue_position,
        "total_deliveries": total_deliveries,
        "deliveries_ahead": deliveries_ahead,
        "is_current_delivery": stop is not None and stop.status == DeliveryStatus.IN_TRANSIT,
        "created_at": to_utc_z(order.created_at),
        "expires_at": to_utc_z(order.expires_at),
    }


def confirm_order(access_token: str) -> OrderOutcome:
    """Customer confirmation: Pending/Postponed -> Confirmed. Re-confirming is a no-op."""
    order = get_order_by_token(access_token)
    order_id = order.id

    def _op():
        order = _load_order_for_update(order_id)
        outbox = Outbox()
        if order.status == OrderStatus.CONFIRMED:
            return OrderOutcome(order=order, replayed=True, outbox=outbox)
        if order.status not in CONFIRMABLE_STATUSES:
            raise InvalidStateError(f"Order is already {order.status.value}")

        order.status = require_transition(order.status, OrderStatus.CONFIRMED, subject=f"Order {order.id}")
        outbox.staff(ORDER_CONFIRMED, {
            "order_id": order.id,
            "client_name": order.client.name if order.client else "Clienta",
            "status": order.status.value,
        })
        return OrderOutcome(order=order, outbox=outbox)

    outcome = run_in_transaction(_op)
    dispatch(outcome.outbox.events)
    return outcome
