# Overview: Post-commit fan-out of lifecycle events to the real-time hub and push subscriptions.

"""
Notification is a side effect, not a consistency boundary:
- dispatch() is called only after the command's transaction committed
- each (event, transport) pair is attempted independently
- transport failures are logged and swallowed; they never reach the caller
- with NOTIFICATIONS_ASYNC the fan-out runs in a Socket.IO background task
  so the HTTP response does not wait for push endpoints
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app

from ..extensions import db, socketio
from . import push_service
from .events import NotificationEvent

TRANSPORTS_KEY = "lastmile.transports"


class SocketIOTransport:
    """Persistent channel: emit to the audience room."""
    name = "realtime"

    def deliver(self, event: NotificationEvent) -> None:
        socketio.emit(event.name, event.payload, to=event.room)


class PushTransport:
    """Store-and-forward channel: only events carrying a PushMessage."""
    name = "push"

    def deliver(self, event: NotificationEvent) -> None:
        if event.push is None or not current_app.config.get("PUSH_ENABLED", True):
            return
        subscriptions = push_service.subscriptions_for(event)
        if subscriptions:
            push_service.send_to_subscriptions(subscriptions, event.push)


def init_notifications(app, transports: list | None = None) -> None:
    app.extensions[TRANSPORTS_KEY] = transports if transports is not None else [SocketIOTransport(), PushTransport()]


def get_transports() -> list:
    return current_app.extensions.get(TRANSPORTS_KEY, [])


def dispatch(events: Iterable[NotificationEvent]) -> None:
    events = list(events)
    if not events:
        return
    if current_app.config.get("NOTIFICATIONS_ASYNC"):
        app = current_app._get_current_object()
        socketio.start_background_task(_deliver_in_app_context, app, events)
    else:
        deliver_all(events)


def _deliver_in_app_context(app, events: list[NotificationEvent]) -> None:
    with app.app_context():
        try:
            deliver_all(events)
        finally:
            db.session.remove()


def deliver_all(events: list[NotificationEvent]) -> None:
    for event in events:
        for transport in get_transports():
            try:
                transport.deliver(event)
            except Exception:
                db.session.rollback()
                current_app.logger.exception(
                    "Notification %s to %s via %s failed", event.name, event.room, transport.name
                )
