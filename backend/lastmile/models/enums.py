"""
Closed status vocabularies shared by models and services.

Values are the strings persisted in the database and exposed over the API.
"""
from __future__ import annotations

import enum


class OrderType(str, enum.Enum):
    DELIVERY = "Delivery"
    PICKUP = "PickUp"


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    IN_ROUTE = "InRoute"
    DELIVERED = "Delivered"
    NOT_DELIVERED = "NotDelivered"
    CANCELED = "Canceled"
    POSTPONED = "Postponed"
    CONFIRMED = "Confirmed"
    SHIPPED = "Shipped"


class RouteStatus(str, enum.Enum):
    PENDING = "Pending"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELED = "Canceled"


class DeliveryStatus(str, enum.Enum):
    PENDING = "Pending"
    IN_TRANSIT = "InTransit"
    DELIVERED = "Delivered"
    NOT_DELIVERED = "NotDelivered"


class EvidenceType(str, enum.Enum):
    DELIVERY_PROOF = "DeliveryProof"
    NON_DELIVERY_PROOF = "NonDeliveryProof"


class SubscriberRole(str, enum.Enum):
    CLIENT = "client"
    DRIVER = "driver"
    ADMIN = "admin"


class ChatSender(str, enum.Enum):
    ADMIN = "Admin"
    DRIVER = "Driver"
    CLIENT = "Client"


def enum_column_type(enum_cls, length: int = 16):
    """String-backed column type that round-trips enum members by value."""
    from ..extensions import db

    return db.Enum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
