# Overview: Access to the single AppSettings row, seeded from Config on first use.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import AppSettings
from ..validation import ValidationError, coerce_int, enforce_amount_cents


def get_settings() -> AppSettings:
    settings = db.session.get(AppSettings, 1)
    if settings is None:
        settings = AppSettings(
            id=1,
            default_shipping_cost_cents=current_app.config["DEFAULT_SHIPPING_COST_CENTS"],
            link_expiration_hours=current_app.config["LINK_EXPIRATION_HOURS"],
        )
        db.session.add(settings)
        db.session.flush()
    return settings


def update_settings(data: dict) -> AppSettings:
    settings = get_settings()
    if "default_shipping_cost_cents" in data:
        settings.default_shipping_cost_cents = enforce_amount_cents(
            coerce_int(data["default_shipping_cost_cents"], "default_shipping_cost_cents"),
            "default_shipping_cost_cents",
        )
    if "link_expiration_hours" in data:
        hours = coerce_int(data["link_expiration_hours"], "link_expiration_hours")
        if hours <= 0:
            raise ValidationError("link_expiration_hours must be > 0")
        settings.link_expiration_hours = hours
    db.session.commit()
    return settings
