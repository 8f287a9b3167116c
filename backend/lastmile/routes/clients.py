# backend/lastmile/routes/clients.py
"""
Client API

- GET    /api/clients           list (?search=)
- POST   /api/clients           create
- GET    /api/clients/:id
- PATCH  /api/clients/:id
- DELETE /api/clients/:id       409 while orders reference the client
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import client_service
from ..validation import ConflictError, NotFoundError, ValidationError


clients_bp = Blueprint("clients", __name__, url_prefix="/api/clients")


@clients_bp.get("")
def list_clients_route():
    try:
        clients = client_service.list_clients(request.args.get("search"))
        return jsonify({"clients": [c.to_dict() for c in clients]}), 200
    except Exception:
        current_app.logger.exception("Failed to list clients")
        return jsonify({"error": "Internal server error"}), 500


@clients_bp.post("")
def create_client_route():
    try:
        client = client_service.create_client(request.get_json(silent=True))
        return jsonify({"client": client.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create client")
        return jsonify({"error": "Internal server error"}), 500


@clients_bp.get("/<int:client_id>")
def get_client_route(client_id: int):
    try:
        return jsonify({"client": client_service.get_client(client_id).to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to get client")
        return jsonify({"error": "Internal server error"}), 500


@clients_bp.patch("/<int:client_id>")
def update_client_route(client_id: int):
    try:
        client = client_service.update_client(client_id, request.get_json(silent=True))
        return jsonify({"client": client.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update client")
        return jsonify({"error": "Internal server error"}), 500


@clients_bp.delete("/<int:client_id>")
def delete_client_route(client_id: int):
    try:
        client_service.delete_client(client_id)
        return "", 204
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to delete client")
        return jsonify({"error": "Internal server error"}), 500
