# Overview: Route-scoped chat: admin <-> driver and driver <-> customer channels.

from __future__ import annotations

from ..extensions import db
from ..models import ChatMessage, ChatSender, Delivery, DeliveryRoute
from ..validation import NotFoundError, require_text
from .concurrency import run_in_transaction
from .events import CHAT_MESSAGE, Outbox
from .notification_service import dispatch
from .order_service import CUSTOMER_CHAT_CLOSED_STATUSES, get_order_by_token

MAX_MESSAGE_LENGTH = 1000


def route_messages(route: DeliveryRoute) -> list[ChatMessage]:
    """Admin <-> driver channel (messages without a stop)."""
    return (
        db.session.query(ChatMessage)
        .filter(ChatMessage.delivery_route_id == route.id, ChatMessage.delivery_id.is_(None))
        .order_by(ChatMessage.sent_at, ChatMessage.id)
        .all()
    )


def stop_messages(route: DeliveryRoute, delivery_id: int) -> list[ChatMessage]:
    stop = _stop_on_route(route, delivery_id)
    return (
        db.session.query(ChatMessage)
        .filter(ChatMessage.delivery_id == stop.id)
        .order_by(ChatMessage.sent_at, ChatMessage.id)
        .all()
    )


def _stop_on_route(route: DeliveryRoute, delivery_id: int) -> Delivery:
    stop = db.session.query(Delivery).filter_by(id=delivery_id, delivery_route_id=route.id).first()
    if stop is None:
        raise NotFoundError(f"Stop {delivery_id} not found on route {route.id}")
    return stop


def _post(route: DeliveryRoute, sender: ChatSender, text: str, *, stop: Delivery | None, notify) -> ChatMessage:
    text = require_text(text, "text", max_length=MAX_MESSAGE_LENGTH)
    route_id = route.id
    stop_id = stop.id if stop is not None else None

    def _op():
        message = ChatMessage(delivery_route_id=route_id, delivery_id=stop_id, sender=sender, text=text)
        db.session.add(message)
        db.session.flush()
        outbox = Outbox()
        notify(outbox, message.to_dict())
        return message, outbox

    message, outbox = run_in_transaction(_op)
    dispatch(outbox.events)
    return message


def post_route_message(route: DeliveryRoute, sender: ChatSender, text: str) -> ChatMessage:
    """Admin <-> driver message; both sides see it."""
    def notify(outbox, payload):
        outbox.driver(route, CHAT_MESSAGE, payload)
        outbox.staff(CHAT_MESSAGE, payload)

    return _post(route, sender, text, stop=None, notify=notify)


def post_driver_to_customer(route: DeliveryRoute, delivery_id: int, text: str) -> ChatMessage:
    stop = _stop_on_route(route, delivery_id)
    order = stop.order

    def notify(outbox, payload):
        outbox.customer(order, CHAT_MESSAGE, payload)

    return _post(route, ChatSender.DRIVER, text, stop=stop, notify=notify)


def _customer_stop(order) -> Delivery | None:
    if order.delivery_route_id is None:
        return None
    return (
        db.session.query(Delivery)
        .filter_by(order_id=order.id, delivery_route_id=order.delivery_route_id)
        .first()
    )


def customer_messages(access_token: str) -> list[ChatMessage]:
    """Empty once the order is off a route or resolved."""
    order = get_order_by_token(access_token)
    stop = _customer_stop(order)
    if stop is None or order.status in CUSTOMER_CHAT_CLOSED_STATUSES:
        return []
    return (
        db.session.query(ChatMessage)
        .filter(ChatMessage.delivery_id == stop.id)
        .order_by(ChatMessage.sent_at, ChatMessage.id)
        .all()
    )


def post_customer_message(access_token: str, text: str) -> ChatMessage:
    order = get_order_by_token(access_token)
    stop = _customer_stop(order)
    if stop is None or order.status in CUSTOMER_CHAT_CLOSED_STATUSES:
        raise NotFoundError("Order is not active on a route")
    route = stop.route

    def notify(outbox, payload):
        outbox.driver(route, CHAT_MESSAGE, payload)

    return _post(route, ChatSender.CLIENT, text, stop=stop, notify=notify)
