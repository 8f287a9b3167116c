# backend/lastmile/routes/push.py
"""
Push subscription API

- GET    /api/push/vapid-public-key        application server key for the browser
- POST   /api/push/subscribe               {endpoint, keys: {p256dh, auth}, role, clientId?, driverToken?}
- DELETE /api/push/unsubscribe?endpoint=   remove a subscription
- POST   /api/push/test                    {title, body, url?} broadcast to every subscription
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import push_service
from ..validation import InvalidStateError, NotFoundError, ValidationError


push_bp = Blueprint("push", __name__, url_prefix="/api/push")


@push_bp.get("/vapid-public-key")
def vapid_public_key_route():
    public_key = current_app.config.get("VAPID_PUBLIC_KEY")
    if not public_key:
        return jsonify({"error": "VAPID keys are not configured"}), 503
    return jsonify({"public_key": public_key}), 200


@push_bp.post("/subscribe")
def subscribe_route():
    try:
        sub = push_service.subscribe(request.get_json(silent=True))
        return jsonify({"subscription_id": sub.id, "role": sub.role.value}), 200
    except (ValidationError, InvalidStateError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to register push subscription")
        return jsonify({"error": "Internal server error"}), 500


@push_bp.delete("/unsubscribe")
def unsubscribe_route():
    endpoint = request.args.get("endpoint")
    if not endpoint:
        return jsonify({"error": "endpoint is required"}), 400
    try:
        removed = push_service.unsubscribe(endpoint)
        return jsonify({"removed": removed}), 200
    except Exception:
        current_app.logger.exception("Failed to remove push subscription")
        return jsonify({"error": "Internal server error"}), 500


@push_bp.post("/test")
def send_test_push_route():
    try:
        report = push_service.send_test(request.get_json(silent=True))
        return jsonify({"success": report.sent, "failed": report.failed + report.pruned}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except push_service.PushNotConfiguredError as e:
        return jsonify({"error": str(e)}), 503
    except Exception:
        current_app.logger.exception("Failed to send test push")
        return jsonify({"error": "Internal server error"}), 500
