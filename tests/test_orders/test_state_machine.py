"""
Test suite for OrderStateMachine.

Covers the transition table, the refund guard, side effects and the
tracking entries appended for every applied transition.
"""

import uuid

import pytest

from marketplace.database.models import OrderStatus, PaymentStatus
from marketplace.services.orders.state_machine import (
    ORDER_TRANSITIONS,
    OrderStateMachine,
    StateTransitionError,
    get_allowed_transitions,
    is_transition_allowed,
)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def state_machine() -> OrderStateMachine:
    return OrderStateMachine()


# ============================================================================
# Transition Table Tests
# ============================================================================


class TestTransitionTable:
    """The lifecycle table itself."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PENDING, OrderStatus.PROCESSING),
            (OrderStatus.PROCESSING, OrderStatus.IN_TRANSIT),
            (OrderStatus.IN_TRANSIT, OrderStatus.OUT_FOR_DELIVERY),
            (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED),
            (OrderStatus.DELIVERED, OrderStatus.REFUNDED),
            (OrderStatus.PENDING, OrderStatus.CANCELLED),
            (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED),
        ],
    )
    def test_allowed_transitions(self, current, target):
        assert is_transition_allowed(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PENDING, OrderStatus.DELIVERED),
            (OrderStatus.PROCESSING, OrderStatus.PENDING),
            (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
            (OrderStatus.CANCELLED, OrderStatus.PROCESSING),
            (OrderStatus.REFUNDED, OrderStatus.DELIVERED),
        ],
    )
    def test_forbidden_transitions(self, current, target):
        assert not is_transition_allowed(current, target)

    def test_terminal_states_have_no_exits(self):
        assert ORDER_TRANSITIONS[OrderStatus.CANCELLED] == set()
        assert ORDER_TRANSITIONS[OrderStatus.REFUNDED] == set()

    def test_every_status_has_an_entry(self):
        assert set(ORDER_TRANSITIONS) == set(OrderStatus)

    def test_get_allowed_transitions_returns_copy(self):
        allowed = get_allowed_transitions(OrderStatus.PENDING)
        allowed.add(OrderStatus.DELIVERED)

        assert OrderStatus.DELIVERED not in ORDER_TRANSITIONS[OrderStatus.PENDING]


# ============================================================================
# Validation Tests
# ============================================================================


class TestValidateTransition:
    def test_invalid_transition_raises_with_allowed_list(self, state_machine, make_order):
        order = make_order(status=OrderStatus.PENDING)

        with pytest.raises(StateTransitionError) as exc_info:
            state_machine.validate_transition(order, OrderStatus.DELIVERED)

        error = exc_info.value
        assert error.current_state == OrderStatus.PENDING
        assert error.target_state == OrderStatus.DELIVERED
        assert error.context["allowed_transitions"] == ["cancelled", "processing"]

    def test_refund_guard_requires_captured_payment(self, state_machine, make_order):
        order = make_order(status=OrderStatus.DELIVERED, payment_status=PaymentStatus.PENDING)

        with pytest.raises(StateTransitionError) as exc_info:
            state_machine.validate_transition(order, OrderStatus.REFUNDED)

        assert exc_info.value.context["guard_failed"] is True

    def test_refund_allowed_for_paid_delivered_order(self, state_machine, make_order):
        order = make_order(status=OrderStatus.DELIVERED, payment_status=PaymentStatus.COMPLETED)

        assert state_machine.can_transition(order, OrderStatus.REFUNDED)

    def test_can_transition_returns_false_instead_of_raising(self, state_machine, make_order):
        order = make_order(status=OrderStatus.CANCELLED)

        assert state_machine.can_transition(order, OrderStatus.PROCESSING) is False


# ============================================================================
# Apply Transition Tests
# ============================================================================


class TestApplyTransition:
    def test_apply_updates_status_and_appends_tracking(self, state_machine, make_order, seller):
        order = make_order(status=OrderStatus.PROCESSING)

        state_machine.apply_transition(
            order, OrderStatus.IN_TRANSIT, actor_id=seller.id, location="Depot 4"
        )

        assert order.status == OrderStatus.IN_TRANSIT
        event = order.tracking_events[-1]
        assert event.status == OrderStatus.IN_TRANSIT
        assert event.description == "Order is in transit"
        assert event.location == "Depot 4"
        assert event.actor_id == seller.id

    def test_cancel_records_reason(self, state_machine, make_order):
        order = make_order(status=OrderStatus.PENDING)

        state_machine.apply_transition(order, OrderStatus.CANCELLED, reason="Changed my mind")

        assert order.status == OrderStatus.CANCELLED
        assert order.cancel_reason == "Changed my mind"
        assert order.tracking_events[-1].description == "Order cancelled: Changed my mind"

    def test_delivered_sets_delivery_date(self, state_machine, make_order):
        order = make_order(status=OrderStatus.OUT_FOR_DELIVERY)

        state_machine.apply_transition(order, OrderStatus.DELIVERED)

        assert order.actual_delivery_date is not None

    def test_refund_marks_payment_refunded(self, state_machine, make_order):
        order = make_order(status=OrderStatus.DELIVERED, payment_status=PaymentStatus.COMPLETED)

        state_machine.apply_transition(order, OrderStatus.REFUNDED, reason="requested_by_customer")

        assert order.status == OrderStatus.REFUNDED
        assert order.payment_status == PaymentStatus.REFUNDED
        assert order.refund_reason == "requested_by_customer"

    def test_explicit_description_is_used_verbatim(self, state_machine, make_order):
        order = make_order(status=OrderStatus.PENDING)

        state_machine.apply_transition(
            order, OrderStatus.CANCELLED, reason="x", description="Cancelled by support"
        )

        assert order.tracking_events[-1].description == "Cancelled by support"

    def test_rejected_transition_leaves_order_untouched(self, state_machine, make_order):
        order = make_order(status=OrderStatus.DELIVERED, payment_status=PaymentStatus.COMPLETED)
        events_before = len(order.tracking_events)

        with pytest.raises(StateTransitionError):
            state_machine.apply_transition(order, OrderStatus.CANCELLED, actor_id=uuid.uuid4())

        assert order.status == OrderStatus.DELIVERED
        assert len(order.tracking_events) == events_before
