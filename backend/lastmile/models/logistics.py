from __future__ import annotations

from ..extensions import db
from lastmile.time_utils import to_utc_z
from .enums import ChatSender, DeliveryStatus, EvidenceType, RouteStatus, enum_column_type


class DeliveryRoute(db.Model):
    """
    An ordered batch of stops driven by one driver session.

    The driver authenticates with driver_token only, so the token is an
    opaque random string, unique, never reused.

    LIFECYCLE: Pending -> Active -> Completed, Canceled from Pending/Active.
    """
    __tablename__ = "delivery_routes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, default="")
    scheduled_date = db.Column(db.Date, nullable=True)
    driver_token = db.Column(db.String(64), nullable=False, unique=True, index=True)
    status = db.Column(enum_column_type(RouteStatus), nullable=False, default=RouteStatus.PENDING, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Last known driver position (last write wins)
    current_latitude = db.Column(db.Float, nullable=True)
    current_longitude = db.Column(db.Float, nullable=True)
    last_location_update = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    deliveries = db.relationship(
        "Delivery",
        back_populates="route",
        lazy=True,
        order_by="Delivery.sort_order",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<DeliveryRoute id={self.id} status={self.status.value if self.status else None}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "scheduled_date": self.scheduled_date.isoformat() if self.scheduled_date else None,
            "driver_token": self.driver_token,
            "status": self.status.value,
            "created_at": to_utc_z(self.created_at),
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "current_latitude": self.current_latitude,
            "current_longitude": self.current_longitude,
            "last_location_update": to_utc_z(self.last_location_update),
        }


class Delivery(db.Model):
    """
    One stop: the routed instance of an order within a specific route.

    INVARIANT: at most one Delivery per route is InTransit (see stop_queue).
    Delivered / NotDelivered are terminal; evidence may still be appended.
    """
    __tablename__ = "deliveries"
    __table_args__ = (
        db.UniqueConstraint("order_id", "delivery_route_id", name="uq_deliveries_order_route"),
        db.Index("ix_deliveries_route_status", "delivery_route_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    delivery_route_id = db.Column(db.Integer, db.ForeignKey("delivery_routes.id"), nullable=False, index=True)

    sort_order = db.Column(db.Integer, nullable=False)
    status = db.Column(enum_column_type(DeliveryStatus), nullable=False, default=DeliveryStatus.PENDING)

    notes = db.Column(db.String(500), nullable=True)
    failure_reason = db.Column(db.String(500), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("deliveries", lazy=True))
    route = db.relationship("DeliveryRoute", back_populates="deliveries")
    evidences = db.relationship("DeliveryEvidence", backref="delivery", lazy=True, order_by="DeliveryEvidence.id")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Delivery id={self.id} sort={self.sort_order} status={self.status.value if self.status else None}>"

    def to_dict(self) -> dict:
        order = self.order
        client = order.client if order else None
        return {
            "delivery_id": self.id,
            "order_id": self.order_id,
            "route_id": self.delivery_route_id,
            "sort_order": self.sort_order,
            "status": self.status.value,
            "client_name": client.name if client else None,
            "client_address": client.address if client else None,
            "latitude": client.latitude if client else None,
            "longitude": client.longitude if client else None,
            "total_cents": order.total_cents if order else None,
            "delivered_at": to_utc_z(self.delivered_at),
            "notes": self.notes,
            "failure_reason": self.failure_reason,
            "evidence": [e.to_dict() for e in self.evidences],
        }


class DeliveryEvidence(db.Model):
    """Append-only photo reference attached during a deliver/fail transition."""
    __tablename__ = "delivery_evidences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False, index=True)
    image_path = db.Column(db.String(500), nullable=False)
    evidence_type = db.Column(enum_column_type(EvidenceType, length=20), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "image_path": self.image_path,
            "type": self.evidence_type.value,
            "created_at": to_utc_z(self.created_at),
        }


class ChatMessage(db.Model):
    """
    Append-only chat line scoped to a route.

    delivery_id NULL: admin <-> driver channel
    delivery_id set:  driver <-> customer channel for that stop
    """
    __tablename__ = "chat_messages"
    __table_args__ = (
        db.Index("ix_chat_route_delivery", "delivery_route_id", "delivery_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    delivery_route_id = db.Column(db.Integer, db.ForeignKey("delivery_routes.id"), nullable=False, index=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=True)
    sender = db.Column(enum_column_type(ChatSender, length=8), nullable=False)
    text = db.Column(db.Text, nullable=False)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_route_id": self.delivery_route_id,
            "delivery_id": self.delivery_id,
            "sender": self.sender.value,
            "text": self.text,
            "sent_at": to_utc_z(self.sent_at),
        }
