# backend/lastmile/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/lastmile.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///lastmile.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Base URL of the storefront used to build driver and customer links
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:4200")
    CORS_ALLOWED_ORIGINS = {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:4200,http://127.0.0.1:4200",
        ).split(",")
        if origin.strip()
    }

    # Seed values for the AppSettings row (editable by staff afterwards)
    DEFAULT_SHIPPING_COST_CENTS = int(os.environ.get("DEFAULT_SHIPPING_COST_CENTS", "6000"))
    LINK_EXPIRATION_HOURS = int(os.environ.get("LINK_EXPIRATION_HOURS", "72"))

    # Loyalty: one point per LOYALTY_CURRENCY_PER_POINT of order total
    LOYALTY_CURRENCY_PER_POINT = int(os.environ.get("LOYALTY_CURRENCY_PER_POINT", "10"))
    NEW_CLIENT_CATEGORY = "Nueva"
    FREQUENT_CLIENT_CATEGORY = "Frecuente"

    EVIDENCE_UPLOAD_DIR = os.environ.get("EVIDENCE_UPLOAD_DIR", "uploads")

    # Notification fan-out
    NOTIFICATIONS_ASYNC = _env_bool("NOTIFICATIONS_ASYNC", True)
    SOCKETIO_ASYNC_MODE = os.environ.get("SOCKETIO_ASYNC_MODE", "threading")
    PUSH_ENABLED = _env_bool("PUSH_ENABLED", True)
    PUSH_TIMEOUT_SECONDS = float(os.environ.get("PUSH_TIMEOUT_SECONDS", "5"))
    PUSH_TTL_SECONDS = int(os.environ.get("PUSH_TTL_SECONDS", "3600"))
    PUSH_ICON = "/assets/icons/icon-192x192.png"

    # VAPID application server keys (base64url); push is skipped without a private key
    VAPID_PUBLIC_KEY = os.environ.get("VAPID_PUBLIC_KEY")
    VAPID_PRIVATE_KEY = os.environ.get("VAPID_PRIVATE_KEY")
    VAPID_SUBJECT = os.environ.get("VAPID_SUBJECT", "mailto:entregas@example.com")
