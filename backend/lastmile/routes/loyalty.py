# backend/lastmile/routes/loyalty.py
"""
Loyalty API

- GET  /api/loyalty/:clientId                  balances and tier
- GET  /api/loyalty/:clientId/history          ledger rows, newest first
- POST /api/loyalty/:clientId/adjust           {points, reason}
- GET  /api/loyalty/tiers                      tier thresholds

Accrual and reversal for delivered orders happen in the lifecycle
commands; this API only reads the ledger and records manual adjustments.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import loyalty_service
from ..validation import NotFoundError, ValidationError, coerce_int


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


@loyalty_bp.get("/tiers")
def tiers_route():
    return jsonify({
        "currency_per_point": current_app.config["LOYALTY_CURRENCY_PER_POINT"],
        "tiers": [
            {"name": loyalty_service.TIER_PINK, "min_lifetime_points": 0},
            {"name": loyalty_service.TIER_ROSE_GOLD, "min_lifetime_points": loyalty_service.ROSE_GOLD_THRESHOLD},
            {"name": loyalty_service.TIER_DIAMOND, "min_lifetime_points": loyalty_service.DIAMOND_THRESHOLD},
        ],
    }), 200


@loyalty_bp.get("/<int:client_id>")
def summary_route(client_id: int):
    try:
        return jsonify(loyalty_service.account_summary(client_id)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load loyalty summary")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/<int:client_id>/history")
def history_route(client_id: int):
    try:
        rows = loyalty_service.history(client_id)
        return jsonify({"transactions": [r.to_dict() for r in rows]}), 200
    except Exception:
        current_app.logger.exception("Failed to load loyalty history")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/<int:client_id>/adjust")
def adjust_route(client_id: int):
    """
    Request body: {"points": 50, "reason": "Regalo de cumpleaños"}

    Negative points redeem; the balance may not go below zero.
    """
    try:
        data = request.get_json(silent=True) or {}
        points = coerce_int(data.get("points"), "points")
        client = loyalty_service.adjust_points(client_id, points, data.get("reason"))
        return jsonify(loyalty_service.account_summary(client.id)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to adjust loyalty points")
        return jsonify({"error": "Internal server error"}), 500
