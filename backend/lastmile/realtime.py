# Overview: Socket.IO room membership for customers, drivers and staff.

"""
Rooms
    order:{accessToken}   customer watching one order
    route:{driverToken}   driver (and staff) watching one route
    staff                 back-office broadcast group

Clients join with the credential they already hold; unknown tokens are
refused in the acknowledgement instead of silently joining an empty room.
Every handler returns an ack dict: {"ok": bool, "room"?: str, "error"?: str}.
"""

from flask import current_app, request
from flask_socketio import join_room, leave_room

from .extensions import db
from .models import DeliveryRoute, Order
from .services.events import STAFF_ROOM, order_room, route_room


def _token(data, *keys) -> str | None:
    if not isinstance(data, dict):
        return None
    for key in keys:
        value = data.get(key)
        if value:
            return str(value)
    return None


def _order_room_for(data) -> str | None:
    token = _token(data, "accessToken", "access_token")
    if token is None:
        return None
    exists = db.session.query(Order.id).filter_by(access_token=token).first()
    return order_room(token) if exists else None


def _route_room_for(data) -> str | None:
    token = _token(data, "driverToken", "driver_token")
    if token is None:
        return None
    exists = db.session.query(DeliveryRoute.id).filter_by(driver_token=token).first()
    return route_room(token) if exists else None


def register_socket_handlers(socketio) -> None:
    @socketio.on("join_order")
    def handle_join_order(data=None):
        room = _order_room_for(data)
        if room is None:
            return {"ok": False, "error": "Order not found"}
        join_room(room)
        return {"ok": True, "room": room}

    @socketio.on("leave_order")
    def handle_leave_order(data=None):
        token = _token(data, "accessToken", "access_token")
        if token is None:
            return {"ok": False, "error": "accessToken is required"}
        leave_room(order_room(token))
        return {"ok": True, "room": order_room(token)}

    @socketio.on("join_route")
    def handle_join_route(data=None):
        room = _route_room_for(data)
        if room is None:
            return {"ok": False, "error": "Route not found"}
        join_room(room)
        return {"ok": True, "room": room}

    @socketio.on("leave_route")
    def handle_leave_route(data=None):
        token = _token(data, "driverToken", "driver_token")
        if token is None:
            return {"ok": False, "error": "driverToken is required"}
        leave_room(route_room(token))
        return {"ok": True, "room": route_room(token)}

    @socketio.on("join_staff")
    def handle_join_staff(data=None):
        join_room(STAFF_ROOM)
        return {"ok": True, "room": STAFF_ROOM}

    @socketio.on("leave_staff")
    def handle_leave_staff(data=None):
        leave_room(STAFF_ROOM)
        return {"ok": True, "room": STAFF_ROOM}

    @socketio.on("disconnect")
    def handle_disconnect(reason=None):
        current_app.logger.debug("Socket disconnected: sid=%s reason=%s", request.sid, reason)
