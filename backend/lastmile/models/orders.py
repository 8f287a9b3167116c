from __future__ import annotations

from ..extensions import db
from lastmile.time_utils import to_utc_z
from .enums import OrderStatus, OrderType, enum_column_type


class Order(db.Model):
    """
    A customer order.

    INVARIANTS:
    - total_cents == subtotal_cents + shipping_cost_cents (see recalculate_totals)
    - order_type == PickUp implies shipping_cost_cents == 0 and the order is
      never selectable for a route
    - access_token is generated once and never rotated
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_client_status", "client_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    delivery_route_id = db.Column(db.Integer, db.ForeignKey("delivery_routes.id"), nullable=True, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    order_type = db.Column(enum_column_type(OrderType), nullable=False, default=OrderType.DELIVERY)
    status = db.Column(enum_column_type(OrderStatus), nullable=False, default=OrderStatus.PENDING, index=True)

    # Customer link credential and its validity window
    access_token = db.Column(db.String(64), nullable=False, unique=True, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    postponed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    postponed_note = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", backref=db.backref("orders", lazy=True))
    delivery_route = db.relationship("DeliveryRoute", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status.value if self.status else None}>"

    def recalculate_totals(self) -> None:
        """Re-derive subtotal from the lines and total from subtotal + shipping."""
        if self.order_type == OrderType.PICKUP:
            self.shipping_cost_cents = 0
        self.subtotal_cents = sum(item.line_total_cents for item in self.items)
        self.total_cents = self.subtotal_cents + (self.shipping_cost_cents or 0)

    def to_dict(self, *, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "client_id": self.client_id,
            "client_name": self.client.name if self.client else None,
            "delivery_route_id": self.delivery_route_id,
            "subtotal_cents": self.subtotal_cents,
            "shipping_cost_cents": self.shipping_cost_cents,
            "total_cents": self.total_cents,
            "order_type": self.order_type.value,
            "status": self.status.value,
            "access_token": self.access_token,
            "expires_at": to_utc_z(self.expires_at),
            "postponed_at": to_utc_z(self.postponed_at),
            "postponed_note": self.postponed_note,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_name = db.Column(db.String(300), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
