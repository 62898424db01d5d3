"""Order state machine implementation with transition validation.

This module implements the OrderStateMachine class that enforces the order
lifecycle table, runs transition guards and side effects, and appends an
entry to the order's tracking history for every applied transition.
Persistence is left to the caller.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set
from uuid import UUID

from marketplace.core.logging import get_logger
from marketplace.database.models.order import Order, OrderStatus, PaymentStatus

logger = get_logger(__name__)


ORDER_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.IN_TRANSIT, OrderStatus.CANCELLED},
    OrderStatus.IN_TRANSIT: {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}

TRACKING_DESCRIPTIONS: Dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Order placed",
    OrderStatus.PROCESSING: "Payment confirmed, order is being processed",
    OrderStatus.IN_TRANSIT: "Order is in transit",
    OrderStatus.OUT_FOR_DELIVERY: "Order is out for delivery",
    OrderStatus.DELIVERED: "Order delivered",
    OrderStatus.CANCELLED: "Order cancelled",
    OrderStatus.REFUNDED: "Order refunded",
}


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: OrderStatus,
        target_state: OrderStatus,
        **context: Any,
    ):
        super().__init__(message)
        self.current_state = current_state
        self.target_state = target_state
        self.context = context


def get_allowed_transitions(status: OrderStatus) -> Set[OrderStatus]:
    """Return the statuses reachable in one step from ``status``."""
    return set(ORDER_TRANSITIONS.get(status, set()))


def is_transition_allowed(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS.get(current, set())


class OrderStateMachine:
    """State machine for managing order lifecycle transitions.

    pending -> processing -> in-transit -> out-for-delivery -> delivered.
    Cancellation is possible from every non-terminal state and a delivered
    order can only move to refunded.
    """

    def __init__(self) -> None:
        self._transition_guards: Dict[
            tuple[OrderStatus, OrderStatus], Callable[[Order], bool]
        ] = {
            (OrderStatus.DELIVERED, OrderStatus.REFUNDED): self._guard_refund_eligible,
        }
        self._side_effects: Dict[
            OrderStatus, Callable[[Order, Optional[str]], None]
        ] = {
            OrderStatus.DELIVERED: self._effect_delivered,
            OrderStatus.CANCELLED: self._effect_cancelled,
            OrderStatus.REFUNDED: self._effect_refunded,
        }

    def validate_transition(self, order: Order, target_status: OrderStatus) -> bool:
        """Validate if transition to target status is allowed.

        Args:
            order: Order instance to validate
            target_status: Desired target status

        Returns:
            True if transition is valid

        Raises:
            StateTransitionError: If the table or a guard rejects the transition
        """
        current_status = order.status

        if not is_transition_allowed(current_status, target_status):
            allowed = sorted(s.value for s in get_allowed_transitions(current_status))
            raise StateTransitionError(
                f"Invalid transition from {current_status.value} to "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                allowed_transitions=allowed,
            )

        guard = self._transition_guards.get((current_status, target_status))
        if guard is not None and not guard(order):
            raise StateTransitionError(
                f"Transition guard failed for {current_status.value} -> "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                guard_failed=True,
            )

        return True

    def can_transition(self, order: Order, target_status: OrderStatus) -> bool:
        try:
            return self.validate_transition(order, target_status)
        except StateTransitionError:
            return False

    def apply_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        actor_id: Optional[UUID] = None,
        reason: Optional[str] = None,
        location: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Order:
        """Apply a transition in memory and append a tracking entry.

        Args:
            order: Order instance to transition
            target_status: Target status
            actor_id: User initiating the transition
            reason: Cancellation or refund reason, or a note for the history
            location: Location reported with the update
            description: Tracking description, defaults to a per-status text

        Returns:
            The same order, mutated

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        old_status = order.status
        self.validate_transition(order, target_status)

        order.status = target_status

        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            side_effect(order, reason)

        text = description or TRACKING_DESCRIPTIONS[target_status]
        if reason and description is None:
            text = f"{text}: {reason}"
        order.add_tracking_event(
            status=target_status,
            description=text,
            location=location,
            actor_id=actor_id,
        )

        logger.info(
            "State transition applied",
            order_id=str(order.id),
            transition=f"{old_status.value}->{target_status.value}",
            actor_id=str(actor_id) if actor_id else None,
        )
        return order

    # Transition Guards

    def _guard_refund_eligible(self, order: Order) -> bool:
        """A refund needs a captured payment."""
        return order.payment_status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)

    # Side Effects

    def _effect_delivered(self, order: Order, reason: Optional[str]) -> None:
        if order.actual_delivery_date is None:
            order.actual_delivery_date = datetime.now(timezone.utc)

    def _effect_cancelled(self, order: Order, reason: Optional[str]) -> None:
        if reason:
            order.cancel_reason = reason

    def _effect_refunded(self, order: Order, reason: Optional[str]) -> None:
        order.payment_status = PaymentStatus.REFUNDED
        if reason:
            order.refund_reason = reason
