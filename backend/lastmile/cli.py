# Overview: Flask CLI command groups for bootstrap, route close-out and ledger maintenance.

# backend/lastmile/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create missing tables and the business settings row (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Routes:
# - python -m flask routes list [--status Active]
#   List the latest routes with stop progress.
# - python -m flask routes liquidate 12
#   Force-close a route: open stops and in-route orders become Delivered.
#
# Orders:
# - python -m flask orders expire-links
#   Report orders whose customer link has expired but are not finished.
#
# Loyalty:
# - python -m flask loyalty recompute
#   Rebuild client point balances from the ledger.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import DeliveryRoute, DeliveryStatus, Order, OrderStatus, RouteStatus
from .services import loyalty_service, route_service
from .services.lifecycle_service import parse_status
from .services.settings_service import get_settings
from .time_utils import utcnow
from .validation import InvalidStateError, NotFoundError

FINISHED_ORDER_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELED)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create tables (when missing) and seed the AppSettings row from config."""
    click.echo("START Initializing delivery system...")
    db.create_all()
    settings = get_settings()
    db.session.commit()
    click.echo(
        f"PASS Settings: shipping {settings.default_shipping_cost_cents} cents, "
        f"links valid {settings.link_expiration_hours} h"
    )


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('routes')
def routes_group():
    """Delivery route inspection and close-out."""


@routes_group.command('list')
@click.option('--status', default=None, help='Pending, Active, Completed or Canceled')
@click.option('--limit', default=20, show_default=True, type=int)
@with_appcontext
def list_routes(status, limit):
    """List recent routes with stop progress."""
    query = db.session.query(DeliveryRoute)
    try:
        wanted = parse_status(RouteStatus, status)
    except InvalidStateError as e:
        raise click.BadParameter(str(e), param_hint="--status")
    if wanted is not None:
        query = query.filter(DeliveryRoute.status == wanted)
    routes = query.order_by(DeliveryRoute.created_at.desc(), DeliveryRoute.id.desc()).limit(limit).all()

    if not routes:
        click.echo("No routes found.")
        return

    for route in routes:
        stops = route.deliveries
        done = sum(1 for s in stops if s.status in (DeliveryStatus.DELIVERED, DeliveryStatus.NOT_DELIVERED))
        click.echo(
            f"{route.id:>5}  {route.status.value:<10} {done}/{len(stops)} stops  "
            f"{route.name}  {route_service.driver_link(route)}"
        )


@routes_group.command('liquidate')
@click.argument('route_id', type=int)
@with_appcontext
def liquidate_route(route_id):
    """Force-close a route whose stops were resolved out-of-band."""
    try:
        outcome = route_service.liquidate_route(route_id)
    except (NotFoundError, InvalidStateError) as e:
        raise click.ClickException(str(e))
    click.echo(
        f"PASS Route {route_id} liquidated; {len(outcome.forced_delivery_ids)} stop(s) forced to Delivered"
    )


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('expire-links')
@with_appcontext
def expire_links():
    """Report unfinished orders whose customer link is no longer valid."""
    now = utcnow()
    expired = (
        db.session.query(Order)
        .filter(Order.expires_at < now, Order.status.notin_(FINISHED_ORDER_STATUSES))
        .order_by(Order.expires_at)
        .all()
    )
    if not expired:
        click.echo("PASS No expired links on open orders.")
        return
    for order in expired:
        click.echo(f"WARN Order {order.id} ({order.status.value}) link expired {order.expires_at:%Y-%m-%d %H:%M}")
    click.echo(f"{len(expired)} order(s) with expired links.")


@click.group('loyalty')
def loyalty_group():
    """Loyalty ledger maintenance."""


@loyalty_group.command('recompute')
@with_appcontext
def recompute_loyalty():
    """Rebuild denormalized point balances from the transaction ledger."""
    changed = loyalty_service.recompute_balances()
    click.echo(f"PASS Recomputed balances; {changed} client(s) corrected")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(routes_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(loyalty_group)
