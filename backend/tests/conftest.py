"""
Pytest fixtures for the delivery backend tests.

Provides an in-memory application, per-test table wipe, a recording
notification transport and small factories for clients, orders and routes.
"""

import pytest

from lastmile import create_app
from lastmile.extensions import db
from lastmile.models import Client, Order, OrderItem, OrderStatus, OrderType
from lastmile.services import route_service
from lastmile.services.notification_service import TRANSPORTS_KEY
from lastmile.services.token_service import generate_token
from lastmile.time_utils import hours_from_now


class RecordingTransport:
    """Captures dispatched events instead of delivering them."""
    name = "recording"

    def __init__(self):
        self.events = []

    def deliver(self, event):
        self.events.append(event)

    def named(self, name):
        return [e for e in self.events if e.name == name]

    def for_room(self, room):
        return [e for e in self.events if e.room == room]

    def clear(self):
        self.events.clear()


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'NOTIFICATIONS_ASYNC': False,
        'PUSH_ENABLED': False,
        'FRONTEND_URL': 'https://tienda.test',
        'EVIDENCE_UPLOAD_DIR': str(tmp_path_factory.mktemp('uploads')),
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifications(app):
    """Swap the real transports for a recorder for the duration of a test."""
    original = app.extensions[TRANSPORTS_KEY]
    recorder = RecordingTransport()
    app.extensions[TRANSPORTS_KEY] = [recorder]
    yield recorder
    app.extensions[TRANSPORTS_KEY] = original


@pytest.fixture(scope='function')
def make_client(db_session):
    counter = {"n": 0}

    def _make(name=None, **fields):
        counter["n"] += 1
        c = Client(name=name or f"Clienta {counter['n']}", address=f"Calle {counter['n']}", **fields)
        db_session.add(c)
        db_session.commit()
        return c

    return _make


@pytest.fixture(scope='function')
def make_order(db_session, make_client):
    """
    Order with a single line. Amounts are in cents.

    make_order(subtotal_cents=25000) -> Delivery order, shipping 0, total 250.00
    """
    def _make(
        client=None,
        *,
        subtotal_cents=10000,
        shipping_cost_cents=0,
        order_type=OrderType.DELIVERY,
        status=OrderStatus.PENDING,
        expires_in_hours=72,
    ):
        client = client or make_client()
        order = Order(
            client_id=client.id,
            access_token=generate_token(),
            order_type=order_type,
            status=status,
            shipping_cost_cents=shipping_cost_cents,
            expires_at=hours_from_now(expires_in_hours),
        )
        order.items.append(OrderItem(
            product_name="Blusa",
            quantity=1,
            unit_price_cents=subtotal_cents,
            line_total_cents=subtotal_cents,
        ))
        order.recalculate_totals()
        db_session.add(order)
        db_session.commit()
        return order

    return _make


@pytest.fixture(scope='function')
def make_route(db_session, make_order):
    """Route over `count` fresh orders (or the given orders), in that stop order."""
    def _make(orders=None, *, count=3, start=False):
        orders = orders if orders is not None else [make_order() for _ in range(count)]
        route = route_service.create_route([o.id for o in orders])
        if start:
            route_service.start_route(route.id)
        return route

    return _make
