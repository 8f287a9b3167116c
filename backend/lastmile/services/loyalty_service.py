# Overview: Loyalty ledger; accrual and reversal driven by order delivery status.

"""
Loyalty Ledger

RULE (single authority for every path that changes an order's status):
- Entering Delivered credits floor(total / LOYALTY_CURRENCY_PER_POINT) points
  and promotes the client to the frequent category.
- Leaving Delivered reverses what is still credited for that order, capped
  at the client's current balance: points already redeemed stay spent and
  the balance never goes negative.
- What is "still credited" is the net of the order's ledger rows, so a
  duplicate Delivered submission, a replayed admin update or a
  Delivered -> Pending -> Delivered round trip can never credit twice.

LoyaltyTransaction rows are append-only; Client.current_points and
Client.lifetime_points are the denormalized running balances.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Client, LoyaltyTransaction, Order, OrderStatus
from ..validation import NotFoundError, ValidationError, require_text
from lastmile.time_utils import to_utc_z

TIER_PINK = "Clienta Pink"
TIER_ROSE_GOLD = "Clienta Rose Gold"
TIER_DIAMOND = "Clienta Diamante"

ROSE_GOLD_THRESHOLD = 100
DIAMOND_THRESHOLD = 300


def points_for_total(total_cents: int) -> int:
    """10 points per 100 currency units by default, rounded down."""
    per_point_cents = current_app.config["LOYALTY_CURRENCY_PER_POINT"] * 100
    if total_cents <= 0:
        return 0
    return total_cents // per_point_cents


def tier_for(lifetime_points: int) -> str:
    if lifetime_points >= DIAMOND_THRESHOLD:
        return TIER_DIAMOND
    if lifetime_points >= ROSE_GOLD_THRESHOLD:
        return TIER_ROSE_GOLD
    return TIER_PINK


def net_points_for_order(order_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(LoyaltyTransaction.points), 0))
        .filter(LoyaltyTransaction.order_id == order_id)
        .scalar()
    )
    return int(total or 0)


def _append(client: Client, points: int, reason: str, *, order_id: int | None = None) -> LoyaltyTransaction:
    txn = LoyaltyTransaction(client_id=client.id, points=points, reason=reason, order_id=order_id)
    db.session.add(txn)
    client.current_points = (client.current_points or 0) + points
    return txn


def accrue_for_order(order: Order) -> int:
    """
    Credit points for a delivered order. Returns the points credited (0 on replay).

    Does not commit; runs inside the caller's unit of work.
    """
    client = order.client
    if client is None:
        return 0

    client.category = current_app.config["FREQUENT_CLIENT_CATEGORY"]

    if net_points_for_order(order.id) > 0:
        return 0
    points = points_for_total(order.total_cents)
    if points <= 0:
        return 0

    _append(client, points, f"Pedido #{order.id} entregado", order_id=order.id)
    client.lifetime_points = (client.lifetime_points or 0) + points
    return points


def reverse_for_order(order: Order) -> int:
    """Reverse whatever is still credited for `order`. Returns the points removed."""
    client = order.client
    if client is None:
        return 0
    credited = net_points_for_order(order.id)
    reversible = min(credited, client.current_points or 0)
    if reversible <= 0:
        return 0

    _append(client, -reversible, f"Pedido #{order.id} revertido", order_id=order.id)
    client.lifetime_points = max(0, (client.lifetime_points or 0) - reversible)
    return reversible


def apply_status_change(order: Order, previous: OrderStatus, new: OrderStatus) -> int:
    """
    Apply the ledger rule for an order status flip. Returns the signed delta.
    """
    if previous != OrderStatus.DELIVERED and new == OrderStatus.DELIVERED:
        return accrue_for_order(order)
    if previous == OrderStatus.DELIVERED and new != OrderStatus.DELIVERED:
        return -reverse_for_order(order)
    return 0


def adjust_points(client_id: int, points: int, reason: str) -> Client:
    """
    Manual gift (points > 0) or redemption (points < 0).

    Raises:
        ValidationError: zero points, or a debit larger than the balance
        NotFoundError: unknown client
    """
    if points == 0:
        raise ValidationError("points cannot be zero")
    reason = require_text(reason, "reason", max_length=200)

    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")

    if points < 0 and (client.current_points or 0) + points < 0:
        raise ValidationError(
            f"Client only has {client.current_points} points; cannot subtract {abs(points)}"
        )

    _append(client, points, reason)
    if points > 0:
        client.lifetime_points = (client.lifetime_points or 0) + points

    db.session.commit()
    return client


def account_summary(client_id: int) -> dict:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")

    last_accrual = (
        db.session.query(func.max(LoyaltyTransaction.occurred_at))
        .filter(LoyaltyTransaction.client_id == client_id, LoyaltyTransaction.points > 0)
        .scalar()
    )

    return {
        "client_id": client.id,
        "client_name": client.name,
        "current_points": client.current_points,
        "lifetime_points": client.lifetime_points,
        "tier": tier_for(client.lifetime_points or 0),
        "last_accrual": to_utc_z(last_accrual),
    }


def history(client_id: int) -> list[LoyaltyTransaction]:
    return (
        db.session.query(LoyaltyTransaction)
        .filter_by(client_id=client_id)
        .order_by(LoyaltyTransaction.occurred_at.desc(), LoyaltyTransaction.id.desc())
        .all()
    )


def recompute_balances() -> int:
    """
    Rebuild every client's balances from the ledger. Returns clients changed.

    lifetime_points counts credits only, less reversals of order accruals.
    """
    changed = 0
    for client in db.session.query(Client).all():
        rows = db.session.query(LoyaltyTransaction).filter_by(client_id=client.id).all()
        current = sum(r.points for r in rows)
        lifetime = sum(r.points for r in rows if r.points > 0)
        lifetime -= sum(-r.points for r in rows if r.points < 0 and r.order_id is not None)
        lifetime = max(0, lifetime)
        if client.current_points != current or client.lifetime_points != lifetime:
            client.current_points = current
            client.lifetime_points = lifetime
            changed += 1
    db.session.commit()
    return changed
