from .enums import (
    OrderType, OrderStatus, RouteStatus, DeliveryStatus, EvidenceType, SubscriberRole, ChatSender,
)
from .customers import Client, LoyaltyTransaction
from .orders import Order, OrderItem
from .logistics import DeliveryRoute, Delivery, DeliveryEvidence, ChatMessage
from .push import PushSubscription
from .settings import AppSettings

__all__ = [
    'OrderType', 'OrderStatus', 'RouteStatus', 'DeliveryStatus', 'EvidenceType', 'SubscriberRole', 'ChatSender',
    'Client', 'LoyaltyTransaction',
    'Order', 'OrderItem',
    'DeliveryRoute', 'Delivery', 'DeliveryEvidence', 'ChatMessage',
    'PushSubscription',
    'AppSettings',
]
