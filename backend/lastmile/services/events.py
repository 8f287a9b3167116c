# Overview: Notification events produced by lifecycle commands and consumed after commit.

"""
Commands never talk to a transport directly. While a unit of work runs they
append NotificationEvent records to an Outbox; once the transaction has
committed, notification_service.dispatch() hands the list to the transports.
A failed or rolled-back command therefore emits nothing.

Audiences:
    customer -> room "order:{access_token}", push by client id
    driver   -> room "route:{driver_token}", push by driver route token
    staff    -> room "staff", push to admin subscriptions
"""

from __future__ import annotations

from dataclasses import dataclass, field

AUDIENCE_CUSTOMER = "customer"
AUDIENCE_DRIVER = "driver"
AUDIENCE_STAFF = "staff"

STAFF_ROOM = "staff"

# Event names (one per lifecycle transition)
DELIVERY_UPDATE = "DeliveryUpdate"
LOCATION_UPDATE = "LocationUpdate"
ROUTE_STARTED = "RouteStarted"
ROUTE_COMPLETED = "RouteCompleted"
ROUTE_CANCELED = "RouteCanceled"
ORDER_CONFIRMED = "OrderConfirmed"
CHAT_MESSAGE = "ChatMessage"


def order_room(access_token: str) -> str:
    return f"order:{access_token}"


def route_room(driver_token: str) -> str:
    return f"route:{driver_token}"


@dataclass(frozen=True)
class PushMessage:
    title: str
    body: str
    url: str | None = None


@dataclass(frozen=True)
class NotificationEvent:
    audience: str
    name: str
    payload: dict
    key: str | None = None
    push: PushMessage | None = None
    client_id: int | None = None

    @property
    def room(self) -> str:
        if self.audience == AUDIENCE_CUSTOMER:
            return order_room(self.key)
        if self.audience == AUDIENCE_DRIVER:
            return route_room(self.key)
        return STAFF_ROOM


@dataclass
class Outbox:
    """Events collected during one unit of work, in emission order."""
    events: list[NotificationEvent] = field(default_factory=list)

    def customer(self, order, name: str, payload: dict, *, push: PushMessage | None = None) -> None:
        self.events.append(NotificationEvent(
            audience=AUDIENCE_CUSTOMER,
            name=name,
            payload=payload,
            key=order.access_token,
            push=push,
            client_id=order.client_id,
        ))

    def driver(self, route, name: str, payload: dict, *, push: PushMessage | None = None) -> None:
        self.events.append(NotificationEvent(
            audience=AUDIENCE_DRIVER,
            name=name,
            payload=payload,
            key=route.driver_token,
            push=push,
        ))

    def staff(self, name: str, payload: dict, *, push: PushMessage | None = None) -> None:
        self.events.append(NotificationEvent(
            audience=AUDIENCE_STAFF,
            name=name,
            payload=payload,
            push=push,
        ))

    def named(self, name: str) -> list[NotificationEvent]:
        return [e for e in self.events if e.name == name]

    def __len__(self) -> int:
        return len(self.events)
