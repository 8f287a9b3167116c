# Overview: Pytest coverage for route creation, start, reorder, liquidation, cancellation and GPS fan-out.

import pytest

from lastmile.extensions import db
from lastmile.models import (
    ChatMessage,
    ChatSender,
    Client,
    Delivery,
    DeliveryRoute,
    DeliveryStatus,
    Order,
    OrderStatus,
    OrderType,
    RouteStatus,
)
from lastmile.services import chat_service, delivery_service, route_service
from lastmile.services.events import (
    DELIVERY_UPDATE,
    LOCATION_UPDATE,
    ROUTE_CANCELED,
    ROUTE_STARTED,
    STAFF_ROOM,
    order_room,
    route_room,
)
from lastmile.validation import InvalidStateError, NotFoundError


def _stops(route_id):
    return (
        db.session.query(Delivery)
        .filter_by(delivery_route_id=route_id)
        .order_by(Delivery.sort_order)
        .all()
    )


class TestCreateRoute:
    def test_keeps_caller_order_and_marks_orders_in_route(self, db_session, make_order):
        a, b, c = make_order(), make_order(), make_order()

        route = route_service.create_route([c.id, a.id, b.id])

        route = db.session.get(DeliveryRoute, route.id)
        assert route.status == RouteStatus.PENDING
        assert route.driver_token
        assert [(s.order_id, s.sort_order) for s in _stops(route.id)] == [(c.id, 1), (a.id, 2), (b.id, 3)]
        for order_id in (a.id, b.id, c.id):
            order = db.session.get(Order, order_id)
            assert order.status == OrderStatus.IN_ROUTE
            assert order.delivery_route_id == route.id

    def test_pickup_and_routed_orders_are_skipped(self, db_session, make_order):
        pickup = make_order(order_type=OrderType.PICKUP)
        routed = make_order()
        route_service.create_route([routed.id])
        fresh = make_order()

        route = route_service.create_route([pickup.id, routed.id, fresh.id])

        assert [s.order_id for s in _stops(route.id)] == [fresh.id]
        assert db.session.get(Order, pickup.id).status == OrderStatus.PENDING

    def test_only_ineligible_orders_rejected(self, db_session, make_order):
        pickup = make_order(order_type=OrderType.PICKUP)
        delivered = make_order(status=OrderStatus.DELIVERED)

        with pytest.raises(InvalidStateError):
            route_service.create_route([pickup.id, delivered.id])
        assert db.session.query(DeliveryRoute).count() == 0

    def test_empty_selection_rejected(self, db_session):
        with pytest.raises(InvalidStateError):
            route_service.create_route([])

    def test_default_name_and_driver_link(self, db_session, make_route):
        route = make_route(count=1)

        assert route.name.startswith("Ruta ")
        assert route_service.driver_link(route) == f"https://tienda.test/repartidor/{route.driver_token}"

    def test_route_to_dict_lists_stops(self, db_session, make_route):
        route = make_route(count=2)

        data = route_service.route_to_dict(db.session.get(DeliveryRoute, route.id))

        assert data["status"] == "Pending"
        assert [d["sort_order"] for d in data["deliveries"]] == [1, 2]
        assert data["driver_link"].endswith(route.driver_token)


class TestStartRoute:
    def test_start_promotes_first_stop(self, db_session, make_route, notifications):
        route = make_route(count=3)

        outcome = route_service.start_route(route.id)

        assert outcome.route.status == RouteStatus.ACTIVE
        assert outcome.route.started_at is not None
        stops = _stops(route.id)
        assert outcome.first_delivery.id == stops[0].id
        assert [s.status for s in stops] == [
            DeliveryStatus.IN_TRANSIT,
            DeliveryStatus.PENDING,
            DeliveryStatus.PENDING,
        ]
        rooms = {e.room for e in notifications.named(ROUTE_STARTED)}
        assert rooms == {STAFF_ROOM, route_room(route.driver_token)}

    def test_second_start_rejected(self, db_session, make_route, notifications):
        route = make_route(count=1, start=True)

        with pytest.raises(InvalidStateError):
            route_service.start_route(route.id)

    def test_unknown_route(self, db_session):
        with pytest.raises(NotFoundError):
            route_service.start_route(4040)


class TestReorder:
    def test_listed_stops_first_rest_keep_relative_order(self, db_session, make_route):
        route = make_route(count=4)
        s1, s2, s3, s4 = _stops(route.id)

        route_service.reorder_route(route.id, [s3.id, 99999, s1.id])

        assert [s.id for s in _stops(route.id)] == [s3.id, s1.id, s2.id, s4.id]
        assert [s.sort_order for s in _stops(route.id)] == [1, 2, 3, 4]

    def test_reorder_does_not_touch_statuses(self, db_session, make_route, notifications):
        route = make_route(count=2, start=True)
        s1, s2 = _stops(route.id)

        route_service.reorder_route(route.id, [s2.id, s1.id])

        assert db.session.get(Delivery, s1.id).status == DeliveryStatus.IN_TRANSIT
        assert db.session.get(Delivery, s2.id).status == DeliveryStatus.PENDING

    def test_completed_route_cannot_be_reordered(self, db_session, make_route, notifications):
        route = make_route(count=1, start=True)
        stop = _stops(route.id)[0]
        delivery_service.mark_delivered(route.id, stop.id)

        with pytest.raises(InvalidStateError):
            route_service.reorder_route(route.id, [stop.id])


class TestLiquidate:
    def test_open_stops_and_orders_forced_to_delivered(self, db_session, make_order, make_route, notifications):
        client = db.session.get(Client, make_order().client_id)
        orders = [make_order(client, subtotal_cents=10000), make_order(subtotal_cents=5000)]
        route = make_route(orders, start=True)

        outcome = route_service.liquidate_route(route.id)

        assert len(outcome.forced_delivery_ids) == 2
        assert all(s.status == DeliveryStatus.DELIVERED for s in _stops(route.id))
        assert all(s.delivered_at is not None for s in _stops(route.id))
        for order in orders:
            assert db.session.get(Order, order.id).status == OrderStatus.DELIVERED
        assert db.session.get(DeliveryRoute, route.id).status == RouteStatus.COMPLETED
        assert db.session.get(Client, client.id).current_points == 10

    def test_liquidating_pending_route(self, db_session, make_route, notifications):
        route = make_route(count=2)

        route_service.liquidate_route(route.id)

        assert db.session.get(DeliveryRoute, route.id).status == RouteStatus.COMPLETED

    def test_failed_stop_is_left_alone(self, db_session, make_route, notifications):
        route = make_route(count=2, start=True)
        first, second = _stops(route.id)
        delivery_service.mark_failed(route.id, first.id, reason="Ausente")

        route_service.liquidate_route(route.id)

        assert db.session.get(Delivery, first.id).status == DeliveryStatus.NOT_DELIVERED
        assert db.session.get(Order, first.order_id).status == OrderStatus.NOT_DELIVERED
        assert db.session.get(Delivery, second.id).status == DeliveryStatus.DELIVERED

    def test_canceled_route_rejected(self, db_session, make_route, notifications):
        route = make_route(count=1)
        route_service.cancel_route(route.id, purge=False)

        with pytest.raises(InvalidStateError):
            route_service.liquidate_route(route.id)


class TestCancel:
    def test_purge_releases_undelivered_orders(self, db_session, make_route, notifications):
        route = make_route(count=3, start=True)
        route_id = route.id
        first = _stops(route.id)[0]
        delivery_service.mark_delivered(route.id, first.id)
        route_obj = db.session.get(DeliveryRoute, route.id)
        chat_service.post_route_message(route_obj, ChatSender.ADMIN, "Llamar antes")
        notifications.clear()

        outcome = route_service.cancel_route(route_id)

        assert len(outcome.released_order_ids) == 2
        assert db.session.get(DeliveryRoute, route_id) is None
        assert db.session.query(Delivery).count() == 0
        assert db.session.query(ChatMessage).count() == 0
        for order_id in outcome.released_order_ids:
            order = db.session.get(Order, order_id)
            assert order.status == OrderStatus.PENDING
            assert order.delivery_route_id is None
        delivered = db.session.get(Order, first.order_id)
        assert delivered.status == OrderStatus.DELIVERED
        assert delivered.delivery_route_id is None
        assert len(notifications.named(ROUTE_CANCELED)) == 2

    def test_released_orders_can_be_routed_again(self, db_session, make_route, notifications):
        route = make_route(count=2)
        order_ids = [s.order_id for s in _stops(route.id)]
        route_service.cancel_route(route.id)

        again = route_service.create_route(order_ids)

        assert len(_stops(again.id)) == 2

    def test_soft_cancel_keeps_resolved_history(self, db_session, make_route, notifications):
        route = make_route(count=2, start=True)
        first, second = _stops(route.id)
        delivery_service.mark_failed(route.id, first.id, reason="Ausente")

        outcome = route_service.cancel_route(route.id, purge=False)

        route = db.session.get(DeliveryRoute, route.id)
        assert route.status == RouteStatus.CANCELED
        assert [s.id for s in _stops(route.id)] == [first.id]
        assert sorted(outcome.released_order_ids) == sorted([first.order_id, second.order_id])

    def test_soft_cancel_of_completed_route_rejected(self, db_session, make_route, notifications):
        route = make_route(count=1, start=True)
        delivery_service.mark_delivered(route.id, _stops(route.id)[0].id)

        with pytest.raises(InvalidStateError):
            route_service.cancel_route(route.id, purge=False)

    def test_customers_are_told(self, db_session, make_route, notifications):
        route = make_route(count=1)
        order = db.session.get(Order, _stops(route.id)[0].order_id)
        token = order.access_token

        route_service.cancel_route(route.id)

        updates = notifications.for_room(order_room(token))
        assert [e.name for e in updates] == [DELIVERY_UPDATE]
        assert updates[0].payload["status"] == "Pending"


class TestLocation:
    def test_location_stored_and_fanned_out(self, db_session, make_route, notifications):
        route = make_route(count=2, start=True)
        tokens = [db.session.get(Order, s.order_id).access_token for s in _stops(route.id)]
        notifications.clear()

        route_service.update_location(route.id, -34.6037, -58.3816)

        route = db.session.get(DeliveryRoute, route.id)
        db.session.refresh(route)
        assert route.current_latitude == pytest.approx(-34.6037)
        assert route.current_longitude == pytest.approx(-58.3816)
        assert route.last_location_update is not None
        rooms = {e.room for e in notifications.named(LOCATION_UPDATE)}
        assert rooms == {STAFF_ROOM, *(order_room(t) for t in tokens)}

    def test_last_write_wins(self, db_session, make_route, notifications):
        route = make_route(count=1, start=True)

        route_service.update_location(route.id, 1.0, 1.0)
        route_service.update_location(route.id, 2.0, 3.0)

        route = db.session.get(DeliveryRoute, route.id)
        db.session.refresh(route)
        assert (route.current_latitude, route.current_longitude) == (2.0, 3.0)
