# backend/lastmile/routes/delivery_routes.py
"""
Route management API (staff side)

- GET    /api/routes                    latest routes
- POST   /api/routes                    build a Pending route from order ids
- GET    /api/routes/:id                route with stops and driver link
- POST   /api/routes/:id/start          Pending -> Active, first stop in transit
- PUT    /api/routes/:id/reorder        reassign stop order
- POST   /api/routes/:id/liquidate      force-close
- POST   /api/routes/:id/cancel         release orders, keep route as Canceled
- DELETE /api/routes/:id                release orders, remove route
- GET    /api/routes/:id/chat           admin <-> driver channel
- POST   /api/routes/:id/chat

Stop order is decided by the caller (optimized externally); it is kept as sent.
"""

from flask import Blueprint, request, jsonify, current_app

from ..models import ChatSender
from ..services import chat_service, route_service
from ..time_utils import parse_iso_datetime
from ..validation import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
    optional_text,
    require_id_list,
)


routes_bp = Blueprint("routes", __name__, url_prefix="/api/routes")


@routes_bp.get("")
def list_routes_route():
    try:
        routes = route_service.list_routes()
        return jsonify({"routes": [route_service.route_to_dict(r) for r in routes]}), 200
    except Exception:
        current_app.logger.exception("Failed to list routes")
        return jsonify({"error": "Internal server error"}), 500


@routes_bp.post("")
def create_route_route():
    """
    Create a route.

    Request body:
        {
            "order_ids": [12, 7, 9],     // stop order as submitted ("orderIds" also accepted)
            "name": "Ruta norte",        // optional
            "scheduled_date": "2026-03-01"  // optional
        }

    Error responses:
        400: no eligible orders (pick-up, already routed, wrong status)
    """
    try:
        data = request.get_json(silent=True) or {}
        order_ids = require_id_list(data.get("order_ids", data.get("orderIds")), "order_ids")
        name = optional_text(data.get("name"), "name", max_length=100)
        scheduled = parse_iso_datetime(data.get("scheduled_date"))

        route = route_service.create_route(
            order_ids,
            name=name,
            scheduled_date=scheduled.date() if scheduled else None,
        )
        return jsonify({"route": route_service.route_to_dict(route)}), 201

    except (ValidationError, InvalidStateError) as e:
        return jsonify({"error": str(e)}), 400
    except ValueError as e:
        # fromisoformat rejects malformed dates with a bare ValueError
        return jsonify({"error": f"Invalid scheduled_date: {e}"}), 400
    except Exception:
        current_app.logger.exception("Failed to create route")
        return jsonify({"error": "Internal server error"}), 500


@routes_bp.get("/<int:route_id>")
def get_route_route(route_id: int):
    try:
        route = route_service.get_route(route_id)
        return jsonify({"route": route_service.route_to_dict(route)}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to get route")
        return jsonify({"error": "Internal server error"}), 500


@routes_bp.post("/<int:route_id>/start")
def start_route_route(route_id: int):
    try:
        outcome = route_service.start_route(route_id)
        return jsonify({
            "route": route_service.route_to_dict(outcome.route),
            "first_delivery_id": outcome.first_delivery.id if outcome.first_delivery else None,
        }), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to start route")
        return jsonify({"error": "Internal server error"}), 500


@routes_bp.put("/<int:route_id>/reorder")
def reorder_route_route(route_id: int):
    """
    Request body: [deliveryId, ...] or {"delivery_ids": [...]}

    Unknown ids are skipped. Statuses are not touched.
    """
    try:
        data = request.get_json(silent=True)
        raw = data.get("delivery_ids") if isinstance(data, dict) else data
        delivery_ids = require_id_list(raw, "delivery_ids")

        route = route_service.reorder_route(route_id, delivery_ids)
        return jsonify({"route": route_service.route_to_dict(route)}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, InvalidStateError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to reorder route")
        return jsonify({"error": "Internal server error"}), 500


@routes_bp.post("/<int:route_id>/liquidate")
def liquidate_route_route(route_id: int):
    try:
        outcome = route_service.liquidate_route(route_id)
        return jsonify({
            "route": route_service.route_to_dict(outcome.route),
            "forced_delivery_ids": outcome.forced_delivery_ids,
        }), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to liquidate route")
        return jsonify({"error": "Internal server error"}), 500


@routes_bp.post("/<int:route_id>/cancel")
def cancel_route_route(route_id: int):
    try:
        outcome = route_service.cancel_route(route_id, purge=False)
        return jsonify({
            "route": route_service.route_to_dict(outcome.route),
            "released_order_ids": outcome.released_order_ids,
        }), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to cancel route")
        return jsonify({"error": "Internal server error"}), 500


@routes_bp.delete("/<int:route_id>")
def delete_route_route(route_id: int):
    try:
        outcome = route_service.cancel_route(route_id, purge=True)
        return jsonify({
            "route_id": route_id,
            "released_order_ids": outcome.released_order_ids,
        }), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete route")
        return jsonify({"error": "Internal server error"}), 500


@routes_bp.get("/<int:route_id>/chat")
def route_chat_route(route_id: int):
    try:
        route = route_service.get_route(route_id)
        messages = chat_service.route_messages(route)
        return jsonify({"messages": [m.to_dict() for m in messages]}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load route chat")
        return jsonify({"error": "Internal server error"}), 500


@routes_bp.post("/<int:route_id>/chat")
def post_route_chat_route(route_id: int):
    try:
        data = request.get_json(silent=True) or {}
        route = route_service.get_route(route_id)
        message = chat_service.post_route_message(route, ChatSender.ADMIN, data.get("text"))
        return jsonify({"message": message.to_dict()}), 201
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to send route chat message")
        return jsonify({"error": "Internal server error"}), 500
