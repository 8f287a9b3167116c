from __future__ import annotations

from ..extensions import db


class AppSettings(db.Model):
    """
    Business-editable defaults (single row, id=1).

    Seeded from Config on first use by settings_service.get_settings().
    """
    __tablename__ = "app_settings"

    id = db.Column(db.Integer, primary_key=True, default=1)
    default_shipping_cost_cents = db.Column(db.Integer, nullable=False, default=6000)
    link_expiration_hours = db.Column(db.Integer, nullable=False, default=72)

    def to_dict(self) -> dict:
        return {
            "default_shipping_cost_cents": self.default_shipping_cost_cents,
            "link_expiration_hours": self.link_expiration_hours,
        }
