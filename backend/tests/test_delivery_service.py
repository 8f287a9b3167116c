# Overview: Pytest coverage for driver stop transitions, auto-advance, completion and replay handling.

import pytest

from lastmile.extensions import db
from lastmile.models import (
    Client,
    Delivery,
    DeliveryEvidence,
    DeliveryRoute,
    DeliveryStatus,
    EvidenceType,
    LoyaltyTransaction,
    Order,
    OrderStatus,
    RouteStatus,
)
from lastmile.services import delivery_service
from lastmile.services.events import DELIVERY_UPDATE, ROUTE_COMPLETED, STAFF_ROOM, order_room
from lastmile.validation import InvalidStateError, NotFoundError


def _stops(route_id):
    return (
        db.session.query(Delivery)
        .filter_by(delivery_route_id=route_id)
        .order_by(Delivery.sort_order)
        .all()
    )


def _in_transit_count(route_id):
    return db.session.query(Delivery).filter_by(
        delivery_route_id=route_id, status=DeliveryStatus.IN_TRANSIT
    ).count()


class TestMarkInTransit:
    def test_switching_active_stop_keeps_single_active(self, db_session, make_route, notifications):
        route = make_route(count=3, start=True)
        first, second, third = _stops(route.id)

        outcome = delivery_service.mark_in_transit(route.id, third.id)

        assert [s.id for s in outcome.demoted] == [first.id]
        assert _in_transit_count(route.id) == 1
        assert db.session.get(Delivery, third.id).status == DeliveryStatus.IN_TRANSIT
        assert db.session.get(Delivery, first.id).status == DeliveryStatus.PENDING

    def test_already_active_is_replay(self, db_session, make_route, notifications):
        route = make_route(count=2, start=True)
        first = _stops(route.id)[0]
        notifications.clear()

        outcome = delivery_service.mark_in_transit(route.id, first.id)

        assert outcome.replayed is True
        assert notifications.events == []

    def test_route_not_active(self, db_session, make_route):
        route = make_route(count=2)
        with pytest.raises(InvalidStateError):
            delivery_service.mark_in_transit(route.id, _stops(route.id)[0].id)

    def test_terminal_stop_rejected(self, db_session, make_route, notifications):
        route = make_route(count=2, start=True)
        first = _stops(route.id)[0]
        delivery_service.mark_delivered(route.id, first.id)
        with pytest.raises(InvalidStateError):
            delivery_service.mark_in_transit(route.id, first.id)

    def test_stop_from_other_route(self, db_session, make_route, notifications):
        route_a = make_route(count=1, start=True)
        route_b = make_route(count=1, start=True)
        foreign = _stops(route_b.id)[0]
        with pytest.raises(NotFoundError):
            delivery_service.mark_in_transit(route_a.id, foreign.id)

    def test_unknown_route(self, db_session):
        with pytest.raises(NotFoundError):
            delivery_service.mark_in_transit(424242, 1)


class TestMarkDelivered:
    def test_delivered_updates_stop_order_and_points(self, db_session, make_order, make_route, notifications):
        order = make_order(subtotal_cents=25000)
        route = make_route([order], start=True)
        stop = _stops(route.id)[0]

        outcome = delivery_service.mark_delivered(route.id, stop.id, notes="Dejado en recepción")

        stop = db.session.get(Delivery, stop.id)
        order = db.session.get(Order, order.id)
        client = db.session.get(Client, order.client_id)
        assert stop.status == DeliveryStatus.DELIVERED
        assert stop.delivered_at is not None
        assert stop.notes == "Dejado en recepción"
        assert order.status == OrderStatus.DELIVERED
        assert outcome.points_awarded == 25
        assert client.current_points == 25
        assert client.lifetime_points == 25
        assert client.category == "Frecuente"

    def test_double_submission_credits_once(self, db_session, make_order, make_route, notifications):
        """Same terminal status twice: same end state, points credited exactly once."""
        order = make_order(subtotal_cents=25000)
        route = make_route([order], start=True)
        stop = _stops(route.id)[0]

        delivery_service.mark_delivered(route.id, stop.id, evidence=["evidence/a.jpg"])
        notifications.clear()
        replay = delivery_service.mark_delivered(route.id, stop.id, evidence=["evidence/b.jpg"])

        client = db.session.get(Client, order.client_id)
        assert replay.replayed is True
        assert replay.points_awarded == 0
        assert client.current_points == 25
        assert db.session.query(LoyaltyTransaction).filter_by(order_id=order.id).count() == 1
        assert notifications.events == []
        evidence = db.session.query(DeliveryEvidence).filter_by(delivery_id=stop.id).all()
        assert sorted(e.image_path for e in evidence) == ["evidence/a.jpg", "evidence/b.jpg"]
        assert all(e.evidence_type == EvidenceType.DELIVERY_PROOF for e in evidence)

    def test_replay_after_route_completed_still_succeeds(self, db_session, make_route, notifications):
        route = make_route(count=1, start=True)
        stop = _stops(route.id)[0]
        delivery_service.mark_delivered(route.id, stop.id)
        assert db.session.get(DeliveryRoute, route.id).status == RouteStatus.COMPLETED

        replay = delivery_service.mark_delivered(route.id, stop.id)
        assert replay.replayed is True

    def test_delivered_then_failed_is_rejected(self, db_session, make_route, notifications):
        route = make_route(count=2, start=True)
        stop = _stops(route.id)[0]
        delivery_service.mark_delivered(route.id, stop.id)
        with pytest.raises(InvalidStateError):
            delivery_service.mark_failed(route.id, stop.id, reason="No estaba")

    def test_first_time_resolution_requires_active_route(self, db_session, make_route):
        route = make_route(count=2)
        with pytest.raises(InvalidStateError):
            delivery_service.mark_delivered(route.id, _stops(route.id)[0].id)

    def test_customer_and_staff_are_notified(self, db_session, make_order, make_route, notifications):
        order = make_order()
        route = make_route([order, make_order()], start=True)
        notifications.clear()

        delivery_service.mark_delivered(route.id, _stops(route.id)[0].id)

        mine = notifications.for_room(order_room(order.access_token))
        assert mine[0].name == DELIVERY_UPDATE
        assert mine[0].payload["status"] == "Delivered"
        assert mine[0].push is not None
        assert notifications.for_room(STAFF_ROOM)


class TestMarkFailed:
    def test_failed_sets_reason_without_points(self, db_session, make_order, make_route, notifications):
        order = make_order(subtotal_cents=50000)
        route = make_route([order], start=True)
        stop = _stops(route.id)[0]

        delivery_service.mark_failed(
            route.id, stop.id, reason="Domicilio cerrado", evidence=["evidence/door.jpg"]
        )

        stop = db.session.get(Delivery, stop.id)
        assert stop.status == DeliveryStatus.NOT_DELIVERED
        assert stop.failure_reason == "Domicilio cerrado"
        assert db.session.get(Order, order.id).status == OrderStatus.NOT_DELIVERED
        assert db.session.get(Client, order.client_id).current_points == 0
        evidence = db.session.query(DeliveryEvidence).filter_by(delivery_id=stop.id).one()
        assert evidence.evidence_type == EvidenceType.NON_DELIVERY_PROOF


class TestAutoAdvanceAndCompletion:
    def test_sequential_advance(self, db_session, make_route, notifications):
        """Starting promotes stop 1; completing stop 1 promotes stop 2."""
        route = make_route(count=3, start=True)
        first, second, third = _stops(route.id)
        assert db.session.get(Delivery, first.id).status == DeliveryStatus.IN_TRANSIT

        outcome = delivery_service.mark_delivered(route.id, first.id)

        assert outcome.next_delivery.id == second.id
        assert db.session.get(Delivery, second.id).status == DeliveryStatus.IN_TRANSIT
        assert _in_transit_count(route.id) == 1

    def test_out_of_order_completion_falls_back_to_smallest_pending(self, db_session, make_route, notifications):
        route = make_route(count=3, start=True)
        first, second, third = _stops(route.id)
        # Driver heads to stop 3 and delivers it while 1 and 2 are still Pending
        delivery_service.mark_in_transit(route.id, third.id)
        outcome = delivery_service.mark_delivered(route.id, third.id)

        assert outcome.next_delivery.id == first.id
        assert db.session.get(Delivery, first.id).status == DeliveryStatus.IN_TRANSIT
        assert db.session.get(Delivery, second.id).status == DeliveryStatus.PENDING

    def test_resolving_a_waiting_stop_promotes_the_one_after_it(self, db_session, make_route, notifications):
        route = make_route(count=3, start=True)
        first, second, third = _stops(route.id)
        notifications.clear()

        outcome = delivery_service.mark_delivered(route.id, second.id)

        assert outcome.next_delivery.id == third.id
        assert db.session.get(Delivery, third.id).status == DeliveryStatus.IN_TRANSIT
        assert db.session.get(Delivery, first.id).status == DeliveryStatus.PENDING
        assert outcome.route_completed is False
        demoted = [e for e in notifications.named("DeliveryUpdate") if e.payload["delivery_id"] == first.id]
        assert demoted and demoted[-1].payload["delivery_status"] == "Pending"

        outcome = delivery_service.mark_failed(route.id, third.id, reason="Ausente")
        assert outcome.next_delivery.id == first.id

    def test_route_completes_exactly_once(self, db_session, make_route, notifications):
        route = make_route(count=2, start=True)
        first, second = _stops(route.id)

        partial = delivery_service.mark_delivered(route.id, first.id)
        assert partial.route_completed is False
        assert db.session.get(DeliveryRoute, route.id).status == RouteStatus.ACTIVE

        final = delivery_service.mark_failed(route.id, second.id, reason="Rechazado")
        assert final.route_completed is True
        assert final.next_delivery is None

        route = db.session.get(DeliveryRoute, route.id)
        assert route.status == RouteStatus.COMPLETED
        assert route.completed_at is not None
        assert len(notifications.named(ROUTE_COMPLETED)) == 2  # staff + driver room

        delivery_service.mark_failed(route.id, second.id, reason="Rechazado")
        assert len(notifications.named(ROUTE_COMPLETED)) == 2

    def test_invariant_holds_after_every_command(self, db_session, make_route, notifications):
        route = make_route(count=4, start=True)
        stops = _stops(route.id)

        commands = [
            lambda: delivery_service.mark_in_transit(route.id, stops[2].id),
            lambda: delivery_service.mark_in_transit(route.id, stops[1].id),
            lambda: delivery_service.mark_delivered(route.id, stops[1].id),
            lambda: delivery_service.mark_failed(route.id, stops[3].id, reason="x"),
            lambda: delivery_service.mark_delivered(route.id, stops[0].id),
            lambda: delivery_service.mark_delivered(route.id, stops[2].id),
        ]
        for command in commands:
            command()
            assert _in_transit_count(route.id) <= 1

        assert db.session.get(DeliveryRoute, route.id).status == RouteStatus.COMPLETED
