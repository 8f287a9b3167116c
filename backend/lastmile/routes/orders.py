# backend/lastmile/routes/orders.py
"""
Order API (staff side)

- GET    /api/orders                       list (?status=, ?client_id=)
- GET    /api/orders/dashboard             counters
- POST   /api/orders/manual                create or merge into the open order
- GET    /api/orders/:id                   order with items
- PATCH  /api/orders/:id/status            status / type / postponement
- DELETE /api/orders/:id/items/:itemId     remove a line
- DELETE /api/orders/:id                   delete order (and its stop)
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import order_service
from ..validation import InvalidStateError, NotFoundError, ValidationError, coerce_int


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_payload(order) -> dict:
    data = order.to_dict(include_items=True)
    data["customer_link"] = f"{current_app.config['FRONTEND_URL'].rstrip('/')}/pedido/{order.access_token}"
    return data


@orders_bp.get("")
def list_orders_route():
    try:
        client_id = request.args.get("client_id")
        orders = order_service.list_orders(
            status=request.args.get("status"),
            client_id=coerce_int(client_id, "client_id") if client_id else None,
        )
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200
    except (ValidationError, InvalidStateError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/dashboard")
def dashboard_route():
    try:
        return jsonify(order_service.dashboard()), 200
    except Exception:
        current_app.logger.exception("Failed to build dashboard")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/manual")
def create_manual_order_route():
    """
    Request body:
        {
            "client_name": "Ana López",
            "client_phone": "555-0101",        // optional
            "client_address": "Calle 1 #23",   // optional
            "order_type": "Delivery",          // or "PickUp" (no shipping)
            "items": [{"product_name": "Blusa", "quantity": 2, "unit_price_cents": 25000}]
        }

    Response 201 for a new order, 200 when merged into the open one.
    """
    try:
        outcome = order_service.create_manual_order(request.get_json(silent=True))
        body = {"order": _order_payload(outcome.order), "merged": outcome.merged}
        return jsonify(body), (200 if outcome.merged else 201)
    except (ValidationError, InvalidStateError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create manual order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        return jsonify({"order": _order_payload(order_service.get_order(order_id))}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/status")
def update_order_status_route(order_id: int):
    """
    Request body (all optional, at least one):
        {"status": "Postponed", "order_type": "PickUp",
         "postponed_at": "2026-03-01T10:00:00Z", "postponed_note": "..."}

    Error responses:
        404: order not found
        400: unknown status/type, InRoute requested, or stop still open
    """
    try:
        outcome = order_service.update_order_status(order_id, request.get_json(silent=True))
        return jsonify({"order": _order_payload(outcome.order)}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, InvalidStateError) as e:
        return jsonify({"error": str(e)}), 400
    except ValueError as e:
        # malformed postponed_at
        return jsonify({"error": f"Invalid postponed_at: {e}"}), 400
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>/items/<int:item_id>")
def remove_item_route(order_id: int, item_id: int):
    try:
        order = order_service.remove_item(order_id, item_id)
        return jsonify({"order": _order_payload(order)}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to remove order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
def delete_order_route(order_id: int):
    try:
        order_service.delete_order(order_id)
        return "", 204
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500
