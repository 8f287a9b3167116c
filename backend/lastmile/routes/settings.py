# backend/lastmile/routes/settings.py
"""
Business settings API

- GET /api/settings   default shipping cost and customer link lifetime
- PUT /api/settings   update either value
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..services import settings_service
from ..validation import ValidationError


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
def get_settings_route():
    try:
        settings = settings_service.get_settings()
        db.session.commit()
        return jsonify({"settings": settings.to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to load settings")
        return jsonify({"error": "Internal server error"}), 500


@settings_bp.put("")
def update_settings_route():
    try:
        settings = settings_service.update_settings(request.get_json(silent=True) or {})
        return jsonify({"settings": settings.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update settings")
        return jsonify({"error": "Internal server error"}), 500
