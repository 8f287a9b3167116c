# Overview: Pytest coverage for the stop, route and order transition tables.

import pytest

from lastmile.models import DeliveryStatus, OrderStatus, RouteStatus
from lastmile.services.lifecycle_service import (
    can_transition,
    is_terminal,
    parse_status,
    require_transition,
)
from lastmile.validation import InvalidStateError


class TestStopTransitions:
    def test_pending_to_in_transit(self):
        assert can_transition(DeliveryStatus.PENDING, DeliveryStatus.IN_TRANSIT)

    def test_in_transit_can_be_demoted(self):
        assert can_transition(DeliveryStatus.IN_TRANSIT, DeliveryStatus.PENDING)

    def test_terminal_states_are_final(self):
        """Delivered and NotDelivered never move again."""
        for terminal in (DeliveryStatus.DELIVERED, DeliveryStatus.NOT_DELIVERED):
            assert is_terminal(terminal)
            for target in DeliveryStatus:
                if target != terminal:
                    assert not can_transition(terminal, target)

    def test_same_state_is_a_noop(self):
        assert can_transition(DeliveryStatus.DELIVERED, DeliveryStatus.DELIVERED)


class TestRouteTransitions:
    def test_happy_path(self):
        assert can_transition(RouteStatus.PENDING, RouteStatus.ACTIVE)
        assert can_transition(RouteStatus.ACTIVE, RouteStatus.COMPLETED)

    def test_cannot_reopen(self):
        assert not can_transition(RouteStatus.COMPLETED, RouteStatus.ACTIVE)
        assert not can_transition(RouteStatus.CANCELED, RouteStatus.PENDING)

    def test_cancel_only_from_open_states(self):
        assert can_transition(RouteStatus.PENDING, RouteStatus.CANCELED)
        assert can_transition(RouteStatus.ACTIVE, RouteStatus.CANCELED)
        assert not can_transition(RouteStatus.COMPLETED, RouteStatus.CANCELED)


class TestOrderTransitions:
    def test_route_assignment_sources(self):
        for source in (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.SHIPPED):
            assert can_transition(source, OrderStatus.IN_ROUTE)
        assert not can_transition(OrderStatus.POSTPONED, OrderStatus.IN_ROUTE)

    def test_confirmation_sources(self):
        assert can_transition(OrderStatus.PENDING, OrderStatus.CONFIRMED)
        assert can_transition(OrderStatus.POSTPONED, OrderStatus.CONFIRMED)
        assert not can_transition(OrderStatus.DELIVERED, OrderStatus.CONFIRMED)


class TestRequireTransition:
    def test_returns_target(self):
        assert require_transition(
            DeliveryStatus.PENDING, DeliveryStatus.IN_TRANSIT, subject="Stop 1"
        ) == DeliveryStatus.IN_TRANSIT

    def test_rejection_carries_readable_reason(self):
        with pytest.raises(InvalidStateError) as exc:
            require_transition(RouteStatus.COMPLETED, RouteStatus.ACTIVE, subject="Route 7")
        assert "Route 7 is Completed" in str(exc.value)

    def test_mixed_machines_are_a_programming_error(self):
        with pytest.raises(TypeError):
            can_transition(RouteStatus.PENDING, DeliveryStatus.PENDING)


class TestParseStatus:
    def test_case_insensitive(self):
        assert parse_status(OrderStatus, "notdelivered") == OrderStatus.NOT_DELIVERED

    def test_empty_is_none(self):
        assert parse_status(OrderStatus, "") is None
        assert parse_status(OrderStatus, None) is None

    def test_unknown_value(self):
        with pytest.raises(InvalidStateError):
            parse_status(RouteStatus, "Paused")
