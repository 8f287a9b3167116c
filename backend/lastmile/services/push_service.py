# Overview: Push subscriptions (store-and-forward channel) and delivery with dead-endpoint pruning.

from __future__ import annotations

import json
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
from flask import current_app
from py_vapid import Vapid, VapidException
from pywebpush import WebPusher, WebPushException

from ..extensions import db
from ..models import PushSubscription, SubscriberRole
from ..validation import NotFoundError, ValidationError, coerce_int, optional_text, require_text
from .events import AUDIENCE_CUSTOMER, AUDIENCE_DRIVER, NotificationEvent, PushMessage
from .lifecycle_service import parse_status
from lastmile.time_utils import utcnow

# Push service answers meaning "this subscription is gone for good"
PRUNE_STATUS_CODES = frozenset({404, 410})

CONTENT_ENCODING = "aes128gcm"


class PushNotConfiguredError(RuntimeError):
    pass


# Unusable subscription keys, bad VAPID claims and unreachable endpoints
SEND_ERRORS = (httpx.HTTPError, WebPushException, VapidException, ValueError)


class WebPushSender:
    """
    Sends one Web Push message: the payload is encrypted for the
    subscription's p256dh/auth keys (RFC 8291, aes128gcm) and the request
    carries a VAPID Authorization header (RFC 8292).

    Returns the push service's HTTP status code.
    """

    def __init__(
        self,
        vapid_private_key: str,
        vapid_subject: str,
        client: httpx.Client | None = None,
        *,
        timeout: float = 5.0,
        ttl_seconds: int = 3600,
    ):
        self.vapid = Vapid.from_string(private_key=vapid_private_key)
        self.vapid_subject = vapid_subject
        self.client = client or httpx.Client(timeout=timeout)
        self.ttl_seconds = ttl_seconds

    def send(self, subscription: PushSubscription, payload: dict) -> int:
        pusher = WebPusher({
            "endpoint": subscription.endpoint,
            "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
        })
        encoded = pusher.encode(json.dumps(payload).encode("utf-8"), content_encoding=CONTENT_ENCODING)

        headers = {
            "TTL": str(self.ttl_seconds),
            "Urgency": "normal",
            "Content-Type": "application/octet-stream",
            "Content-Encoding": CONTENT_ENCODING,
        }
        headers.update(self.vapid.sign(self._claims(subscription.endpoint)))

        response = self.client.post(subscription.endpoint, content=encoded["body"], headers=headers)
        return response.status_code

    def _claims(self, endpoint: str) -> dict:
        url = urlparse(endpoint)
        return {"sub": self.vapid_subject, "aud": f"{url.scheme}://{url.netloc}"}


@dataclass
class PushReport:
    sent: int = 0
    failed: int = 0
    pruned: int = 0


def get_sender():
    """Shared sender for the app, or None while no VAPID private key is configured."""
    sender = current_app.extensions.get("lastmile.push_sender")
    if sender is None:
        private_key = current_app.config.get("VAPID_PRIVATE_KEY")
        if not private_key:
            return None
        sender = WebPushSender(
            private_key,
            current_app.config["VAPID_SUBJECT"],
            timeout=current_app.config["PUSH_TIMEOUT_SECONDS"],
            ttl_seconds=current_app.config["PUSH_TTL_SECONDS"],
        )
        current_app.extensions["lastmile.push_sender"] = sender
    return sender


def subscribe(data: dict) -> PushSubscription:
    """
    Register (or refresh) a browser subscription, keyed by endpoint.

    Payload: {endpoint, keys: {p256dh, auth}, role?, clientId?, driverToken?}
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    endpoint = require_text(data.get("endpoint"), "endpoint", max_length=2048)
    keys = data.get("keys") or {}
    p256dh = require_text(keys.get("p256dh"), "keys.p256dh", max_length=512)
    auth = require_text(keys.get("auth"), "keys.auth", max_length=512)
    role = parse_status(SubscriberRole, data.get("role"), field="role") or SubscriberRole.CLIENT

    raw_client_id = data.get("clientId", data.get("client_id"))
    client_id = coerce_int(raw_client_id, "clientId") if raw_client_id is not None else None
    driver_token = optional_text(data.get("driverToken", data.get("driver_token")), "driverToken", max_length=64)

    if role == SubscriberRole.CLIENT and client_id is None:
        raise ValidationError("clientId is required for client subscriptions")
    if role == SubscriberRole.DRIVER and driver_token is None:
        raise ValidationError("driverToken is required for driver subscriptions")

    sub = db.session.query(PushSubscription).filter_by(endpoint=endpoint).first()
    if sub is None:
        sub = PushSubscription(endpoint=endpoint)
        db.session.add(sub)

    sub.p256dh = p256dh
    sub.auth = auth
    sub.role = role
    sub.client_id = client_id if role == SubscriberRole.CLIENT else None
    sub.driver_route_token = driver_token if role == SubscriberRole.DRIVER else None

    db.session.commit()
    return sub


def unsubscribe(endpoint: str) -> bool:
    sub = db.session.query(PushSubscription).filter_by(endpoint=endpoint).first()
    if sub is None:
        return False
    db.session.delete(sub)
    db.session.commit()
    return True


def subscriptions_for(event: NotificationEvent) -> list[PushSubscription]:
    q = db.session.query(PushSubscription)
    if event.audience == AUDIENCE_CUSTOMER:
        if event.client_id is None:
            return []
        q = q.filter_by(role=SubscriberRole.CLIENT, client_id=event.client_id)
    elif event.audience == AUDIENCE_DRIVER:
        q = q.filter_by(role=SubscriberRole.DRIVER, driver_route_token=event.key)
    else:
        q = q.filter_by(role=SubscriberRole.ADMIN)
    return q.order_by(PushSubscription.id).all()


def build_payload(message: PushMessage) -> dict:
    return {
        "notification": {
            "title": message.title,
            "body": message.body,
            "icon": current_app.config["PUSH_ICON"],
            "vibrate": [100, 50, 100],
            "data": {"url": message.url or "/"},
        }
    }


def send_to_subscriptions(subscriptions: list[PushSubscription], message: PushMessage, *, sender=None) -> PushReport:
    """
    Best-effort delivery. Dead endpoints (404/410) are deleted; every other
    failure is logged and counted, never raised.
    """
    report = PushReport()
    if not subscriptions:
        return report

    sender = sender or get_sender()
    if sender is None:
        current_app.logger.warning("VAPID keys not configured; skipped push to %d subscriptions", len(subscriptions))
        return report
    payload = build_payload(message)

    for sub in subscriptions:
        try:
            status = sender.send(sub, payload)
        except SEND_ERRORS as exc:
            report.failed += 1
            current_app.logger.warning("Push failed for endpoint %s: %s", sub.endpoint, exc)
            continue

        if 200 <= status < 300:
            sub.last_used_at = utcnow()
            report.sent += 1
        elif status in PRUNE_STATUS_CODES:
            db.session.delete(sub)
            report.pruned += 1
            current_app.logger.warning("Pruned push subscription %s (HTTP %s)", sub.endpoint, status)
        else:
            report.failed += 1
            current_app.logger.warning("Push failed for endpoint %s: HTTP %s", sub.endpoint, status)

    db.session.commit()
    return report


def send_test(data: dict, *, sender=None) -> PushReport:
    """Broadcast a staff-authored message to every stored subscription."""
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    message = PushMessage(
        title=require_text(data.get("title"), "title", max_length=120),
        body=require_text(data.get("body"), "body", max_length=500),
        url=optional_text(data.get("url"), "url", max_length=500),
    )
    subscriptions = db.session.query(PushSubscription).order_by(PushSubscription.id).all()
    if not subscriptions:
        raise NotFoundError("No push subscriptions")
    sender = sender or get_sender()
    if sender is None:
        raise PushNotConfiguredError("VAPID keys are not configured")
    return send_to_subscriptions(subscriptions, message, sender=sender)
