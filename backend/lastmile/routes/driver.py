# backend/lastmile/routes/driver.py
"""
Driver API, addressed by the route's driver token

- GET  /api/driver/:token                           route with stops
- POST /api/driver/:token/start                     Pending -> Active
- POST /api/driver/:token/transit/:deliveryId       make this the active stop
- POST /api/driver/:token/deliver/:deliveryId       multipart: notes, evidence
- POST /api/driver/:token/fail/:deliveryId          multipart: reason, notes, evidence
- POST /api/driver/:token/location                  {lat, lng}
- GET/POST /api/driver/:token/chat                  admin <-> driver channel
- GET/POST /api/driver/:token/chat/:deliveryId      driver <-> customer channel

Deliver/fail may be resubmitted from a flaky connection: repeating the
same terminal status answers 200 with "replayed": true.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_driver_route
from ..models import ChatSender
from ..services import chat_service, delivery_service, route_service
from ..services.evidence_store import discard_evidence, save_evidence
from ..validation import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
    optional_text,
    require_coordinates,
    require_text,
)


driver_bp = Blueprint("driver", __name__, url_prefix="/api/driver")


def _form_or_json() -> dict:
    if request.form:
        return request.form.to_dict()
    return request.get_json(silent=True) or {}


def _stop_evidence(delivery_id: int) -> list[str]:
    """Stores uploaded photos once the stop is known to belong to g.route."""
    if delivery_id not in {d.id for d in g.route.deliveries}:
        raise NotFoundError(f"Stop {delivery_id} not found on route {g.route.id}")
    files = request.files.getlist("evidence") + request.files.getlist("photos")
    return save_evidence(delivery_id, files)


def _with_evidence(delivery_id: int, command):
    """Runs `command(evidence)`; photos stored for it are removed again if it raises."""
    evidence = _stop_evidence(delivery_id)
    try:
        return command(evidence)
    except Exception:
        discard_evidence(evidence)
        raise


@driver_bp.get("/<token>")
@require_driver_route
def driver_view_route():
    try:
        return jsonify({"route": route_service.route_to_dict(g.route)}), 200
    except Exception:
        current_app.logger.exception("Failed to load driver route")
        return jsonify({"error": "Internal server error"}), 500


@driver_bp.post("/<token>/start")
@require_driver_route
def driver_start_route():
    try:
        outcome = route_service.start_route(g.route.id)
        return jsonify({
            "route": route_service.route_to_dict(outcome.route),
            "first_delivery_id": outcome.first_delivery.id if outcome.first_delivery else None,
        }), 200
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to start route from driver link")
        return jsonify({"error": "Internal server error"}), 500


@driver_bp.post("/<token>/transit/<int:delivery_id>")
@require_driver_route
def transit_route(delivery_id: int):
    """
    Promote a stop to InTransit; any other active stop goes back to Pending.

    Error responses:
        404: stop not on this route
        400: route not active, or stop already resolved
    """
    try:
        outcome = delivery_service.mark_in_transit(g.route.id, delivery_id)
        return jsonify(outcome.to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to mark stop in transit")
        return jsonify({"error": "Internal server error"}), 500


@driver_bp.post("/<token>/deliver/<int:delivery_id>")
@require_driver_route
def deliver_route(delivery_id: int):
    try:
        data = _form_or_json()
        notes = optional_text(data.get("notes"), "notes", max_length=500)
        outcome = _with_evidence(
            delivery_id,
            lambda evidence: delivery_service.mark_delivered(g.route.id, delivery_id, notes=notes, evidence=evidence),
        )
        return jsonify(outcome.to_dict()), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, InvalidStateError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to mark stop delivered")
        return jsonify({"error": "Internal server error"}), 500


@driver_bp.post("/<token>/fail/<int:delivery_id>")
@require_driver_route
def fail_route(delivery_id: int):
    try:
        data = _form_or_json()
        reason = require_text(data.get("reason"), "reason", max_length=500)
        notes = optional_text(data.get("notes"), "notes", max_length=500)
        outcome = _with_evidence(
            delivery_id,
            lambda evidence: delivery_service.mark_failed(
                g.route.id, delivery_id, reason=reason, notes=notes, evidence=evidence
            ),
        )
        return jsonify(outcome.to_dict()), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, InvalidStateError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to mark stop failed")
        return jsonify({"error": "Internal server error"}), 500


@driver_bp.post("/<token>/location")
@require_driver_route
def location_route():
    try:
        lat, lng = require_coordinates(request.get_json(silent=True) or {})
        route = route_service.update_location(g.route.id, lat, lng)
        return jsonify({"route_id": route.id, "latitude": lat, "longitude": lng}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update driver location")
        return jsonify({"error": "Internal server error"}), 500


@driver_bp.get("/<token>/chat")
@require_driver_route
def driver_chat_route():
    try:
        messages = chat_service.route_messages(g.route)
        return jsonify({"messages": [m.to_dict() for m in messages]}), 200
    except Exception:
        current_app.logger.exception("Failed to load driver chat")
        return jsonify({"error": "Internal server error"}), 500


@driver_bp.post("/<token>/chat")
@require_driver_route
def post_driver_chat_route():
    try:
        data = request.get_json(silent=True) or {}
        message = chat_service.post_route_message(g.route, ChatSender.DRIVER, data.get("text"))
        return jsonify({"message": message.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to send driver chat message")
        return jsonify({"error": "Internal server error"}), 500


@driver_bp.get("/<token>/chat/<int:delivery_id>")
@require_driver_route
def driver_stop_chat_route(delivery_id: int):
    try:
        messages = chat_service.stop_messages(g.route, delivery_id)
        return jsonify({"messages": [m.to_dict() for m in messages]}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load stop chat")
        return jsonify({"error": "Internal server error"}), 500


@driver_bp.post("/<token>/chat/<int:delivery_id>")
@require_driver_route
def post_driver_stop_chat_route(delivery_id: int):
    try:
        data = request.get_json(silent=True) or {}
        message = chat_service.post_driver_to_customer(g.route, delivery_id, data.get("text"))
        return jsonify({"message": message.to_dict()}), 201
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to send message to customer")
        return jsonify({"error": "Internal server error"}), 500
