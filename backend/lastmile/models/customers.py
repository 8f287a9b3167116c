from __future__ import annotations

from ..extensions import db
from lastmile.time_utils import to_utc_z


class Client(db.Model):
    """
    Customer receiving deliveries.

    Loyalty balances are denormalized here and kept in step with the
    append-only LoyaltyTransaction ledger by loyalty_service.
    A client is never hard-deleted while any order references it.
    """
    __tablename__ = "clients"
    __table_args__ = (
        db.Index("ix_clients_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    address = db.Column(db.String(500), nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    # "Nueva", "Frecuente" or a staff-defined tag
    category = db.Column(db.String(32), nullable=False, default="Nueva")

    current_points = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Client id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "category": self.category,
            "current_points": self.current_points,
            "lifetime_points": self.lifetime_points,
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of loyalty point movements.

    points > 0: accrual (delivered order, staff gift)
    points < 0: reversal or redemption

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_client_date", "client_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(200), nullable=False)

    # Set for accruals/reversals driven by an order's delivery status
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    client = db.relationship("Client", backref=db.backref("loyalty_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "points": self.points,
            "reason": self.reason,
            "order_id": self.order_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
