from __future__ import annotations

from ..extensions import db
from lastmile.time_utils import to_utc_z
from .enums import SubscriberRole, enum_column_type


class PushSubscription(db.Model):
    """
    Store-and-forward push endpoint registered by a browser.

    Rows are pruned when the push service answers 404/410 for the endpoint.
    """
    __tablename__ = "push_subscriptions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    endpoint = db.Column(db.String(2048), nullable=False, unique=True)
    p256dh = db.Column(db.String(512), nullable=False)
    auth = db.Column(db.String(512), nullable=False)

    role = db.Column(enum_column_type(SubscriberRole, length=8), nullable=False, default=SubscriberRole.CLIENT, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=True, index=True)
    driver_route_token = db.Column(db.String(64), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "endpoint": self.endpoint,
            "role": self.role.value,
            "client_id": self.client_id,
            "driver_route_token": self.driver_route_token,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
        }
