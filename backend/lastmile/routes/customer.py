# backend/lastmile/routes/customer.py
"""
Customer link API: /api/pedido/:accessToken

The access token is the only credential. Unknown tokens answer 404; expired
links answer 410 Gone, independent of delivery progress.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_order_access
from ..services import chat_service, order_service
from ..validation import InvalidStateError, NotFoundError, ValidationError


customer_bp = Blueprint("customer", __name__, url_prefix="/api/pedido")


@customer_bp.get("/<access_token>")
@require_order_access
def customer_order_route():
    """
    Customer view.

    Response includes the derived status ("InTransit" while the driver is
    heading to this stop), queue position, deliveries ahead and the driver
    location while the route is active.
    """
    try:
        return jsonify(order_service.get_customer_view(g.order.access_token)), 200
    except Exception:
        current_app.logger.exception("Failed to load customer order view")
        return jsonify({"error": "Internal server error"}), 500


@customer_bp.post("/<access_token>/confirm")
@require_order_access
def confirm_order_route():
    try:
        outcome = order_service.confirm_order(g.order.access_token)
        return jsonify({
            "order_id": outcome.order.id,
            "status": outcome.order.status.value,
            "replayed": outcome.replayed,
        }), 200
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to confirm order")
        return jsonify({"error": "Internal server error"}), 500


@customer_bp.get("/<access_token>/chat")
@require_order_access
def customer_chat_route():
    try:
        messages = chat_service.customer_messages(g.order.access_token)
        return jsonify({"messages": [m.to_dict() for m in messages]}), 200
    except Exception:
        current_app.logger.exception("Failed to load customer chat")
        return jsonify({"error": "Internal server error"}), 500


@customer_bp.post("/<access_token>/chat")
@require_order_access
def post_customer_chat_route():
    try:
        data = request.get_json(silent=True) or {}
        message = chat_service.post_customer_message(g.order.access_token, data.get("text"))
        return jsonify({"message": message.to_dict()}), 201
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to send customer chat message")
        return jsonify({"error": "Internal server error"}), 500
