# Overview: Client records; deletion is refused while orders reference the client.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Client, Order
from ..validation import ConflictError, ModelValidationPolicy, NotFoundError, validate_payload

CLIENT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "address", "latitude", "longitude", "category"},
    required_on_create={"name"},
)


def create_client(payload: dict) -> Client:
    patch = validate_payload(model=Client, payload=payload, policy=CLIENT_POLICY, partial=False)
    patch.setdefault("category", current_app.config["NEW_CLIENT_CATEGORY"])
    client = Client(**patch)
    db.session.add(client)
    db.session.commit()
    return client


def update_client(client_id: int, payload: dict) -> Client:
    client = get_client(client_id)
    patch = validate_payload(model=Client, payload=payload, policy=CLIENT_POLICY, partial=True)
    for key, value in patch.items():
        setattr(client, key, value)
    db.session.commit()
    return client


def get_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")
    return client


def list_clients(search: str | None = None) -> list[Client]:
    query = db.session.query(Client)
    if search:
        query = query.filter(func.lower(Client.name).contains(search.strip().lower()))
    return query.order_by(Client.name, Client.id).all()


def delete_client(client_id: int) -> None:
    client = get_client(client_id)
    orders = db.session.query(func.count(Order.id)).filter(Order.client_id == client.id).scalar()
    if orders:
        raise ConflictError(f"Client {client.id} still has {orders} order(s) and cannot be deleted")
    if client.loyalty_transactions:
        raise ConflictError(f"Client {client.id} has loyalty history and cannot be deleted")
    db.session.delete(client)
    db.session.commit()
