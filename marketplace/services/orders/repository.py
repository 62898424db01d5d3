"""
Order data access repository.

This module implements the OrderRepository class providing async methods for
creating checkout orders, loading orders by id or gateway transaction id,
saving mutations with total recomputation, and atomically claiming an order
for a captured payment. Database errors are logged, the session is rolled
back and the error is re-raised as an ``OrderRepositoryError``.
"""

import uuid
from datetime import date, datetime
from typing import Any, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from marketplace.core.logging import get_logger
from marketplace.database.models.order import (
    ORDER_NUMBER_PREFIX,
    Order,
    OrderStatus,
    PaymentStatus,
)
from marketplace.database.models.user import UserRole

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""


class OrderCreationError(OrderRepositoryError):
    """Raised when order creation fails."""


class DuplicateOrderNumberError(OrderCreationError):
    """Raised when an order number is already taken."""


class OrderUpdateError(OrderRepositoryError):
    """Raised when order update fails."""


class OrderRepository:
    """
    Repository for order data access operations.

    Every write recomputes the order totals before it reaches the database,
    so the stored total always matches the line items and fees.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def next_order_sequence(self, day: date) -> int:
        """
        Return the next free daily sequence number for order numbers.

        Args:
            day: Day the orders are created on

        Returns:
            One more than the highest sequence already used on ``day``

        Raises:
            OrderRepositoryError: If the lookup fails
        """
        prefix = f"{ORDER_NUMBER_PREFIX}{day:%Y%m%d}"
        try:
            result = await self.session.execute(
                select(Order.order_number)
                .where(Order.order_number.like(f"{prefix}%"))
                .order_by(func.length(Order.order_number).desc(), Order.order_number.desc())
                .limit(1)
            )
            last = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to read daily order sequence", day=day.isoformat(), error=str(e))
            raise OrderRepositoryError(
                "Failed to compute order sequence", day=day.isoformat(), error=str(e)
            ) from e

        if last is None:
            return 1
        return int(last[len(prefix):]) + 1

    async def create_orders(self, orders: Sequence[Order]) -> list[Order]:
        """
        Persist a batch of checkout orders atomically.

        The inserts run in a savepoint, so a rejected batch leaves the rest of
        the session usable and the same orders can be inserted again.

        Args:
            orders: New orders with line items and tracking entries attached

        Returns:
            The persisted orders

        Raises:
            DuplicateOrderNumberError: If an order number is already taken
            OrderCreationError: If any order cannot be inserted
        """
        order_numbers = [order.order_number for order in orders]
        try:
            async with self.session.begin_nested():
                for order in orders:
                    order.recalculate_totals()
                    self.session.add(order)
                await self.session.flush()
        except IntegrityError as e:
            duplicate = "order_number" in str(e.orig)
            logger.error(
                "Order creation failed - integrity error",
                order_numbers=order_numbers,
                duplicate_order_number=duplicate,
                error=str(e),
            )
            error_cls = DuplicateOrderNumberError if duplicate else OrderCreationError
            raise error_cls(
                "Order creation failed due to data integrity violation",
                order_numbers=order_numbers,
                error=str(e),
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Order creation failed - database error",
                order_numbers=order_numbers,
                error=str(e),
            )
            raise OrderCreationError(
                "Order creation failed due to database error",
                order_numbers=order_numbers,
                error=str(e),
            ) from e

        try:
            await self.session.commit()
            for order in orders:
                await self.session.refresh(order)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Order creation failed - commit error",
                order_numbers=order_numbers,
                error=str(e),
            )
            raise OrderCreationError(
                "Order creation failed due to database error",
                order_numbers=order_numbers,
                error=str(e),
            ) from e

        logger.info(
            "Orders created",
            order_numbers=order_numbers,
            order_count=len(orders),
        )
        return list(orders)

    async def get_order_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        """
        Get order by ID with items and tracking history.

        Args:
            order_id: Order identifier

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            result = await self.session.execute(
                select(Order)
                .where(Order.id == order_id)
                .execution_options(populate_existing=True)
            )
            order = result.scalar_one_or_none()
            logger.debug("Order lookup", order_id=str(order_id), found=order is not None)
            return order
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=str(order_id), error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order", order_id=str(order_id), error=str(e)
            ) from e

    async def get_orders_by_transaction_id(self, transaction_id: str) -> list[Order]:
        """
        Get every order paid through a gateway payment intent.

        Args:
            transaction_id: Gateway payment intent id

        Returns:
            Matching orders, possibly empty

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            result = await self.session.execute(
                select(Order)
                .where(Order.transaction_id == transaction_id)
                .order_by(Order.created_at)
                .execution_options(populate_existing=True)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch orders by transaction",
                transaction_id=transaction_id,
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to fetch orders by transaction",
                transaction_id=transaction_id,
                error=str(e),
            ) from e

    async def list_orders(
        self,
        user_id: uuid.UUID,
        role: UserRole,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Order], int]:
        """
        List orders visible to a user with pagination.

        Buyers see orders they placed, sellers orders they fulfil, drivers
        orders assigned to them and admins every order.

        Args:
            user_id: Requesting user
            role: Role of the requesting user
            status: Optional status filter
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (orders, total_count)

        Raises:
            OrderRepositoryError: If query fails
        """
        conditions = []
        if role == UserRole.SELLER:
            conditions.append(Order.seller_id == user_id)
        elif role == UserRole.DRIVER:
            conditions.append(Order.driver_id == user_id)
        elif role != UserRole.ADMIN:
            conditions.append(Order.customer_id == user_id)
        if status is not None:
            conditions.append(Order.status == status)

        try:
            stmt = (
                select(Order)
                .where(*conditions)
                .order_by(Order.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            count_stmt = select(func.count()).select_from(Order).where(*conditions)

            result = await self.session.execute(stmt)
            count_result = await self.session.execute(count_stmt)

            return list(result.scalars().all()), int(count_result.scalar_one())
        except SQLAlchemyError as e:
            logger.error(
                "Failed to list orders",
                user_id=str(user_id),
                role=role.value,
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to list orders", user_id=str(user_id), error=str(e)
            ) from e

    async def save(self, order: Order) -> Order:
        """
        Recompute totals and commit pending changes to an order.

        Args:
            order: Mutated order

        Returns:
            The saved order

        Raises:
            OrderUpdateError: If the commit fails
        """
        order_id = order.id
        try:
            order.recalculate_totals()
            self.session.add(order)
            await self.session.commit()
            await self.session.refresh(order)
            logger.debug(
                "Order saved",
                order_id=str(order_id),
                status=order.status.value,
                payment_status=order.payment_status.value,
            )
            return order
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to save order", order_id=str(order_id), error=str(e))
            raise OrderUpdateError(
                "Failed to save order", order_id=str(order_id), error=str(e)
            ) from e

    async def claim_payment(
        self,
        order: Order,
        payment_intent_id: str,
        paid_at: datetime,
        description: str,
    ) -> bool:
        """
        Atomically mark an order as paid by a payment intent.

        The update only matches while the order is not already completed by
        the same payment intent, so two concurrent deliveries of one event
        cannot both claim the order.

        Args:
            order: Order loaded by the caller
            payment_intent_id: Gateway payment intent id
            paid_at: Payment confirmation time
            description: Tracking history description

        Returns:
            True if this call claimed the order, False if it was already paid

        Raises:
            OrderUpdateError: If the update fails
        """
        order_id = order.id
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                or_(
                    Order.payment_status != PaymentStatus.COMPLETED,
                    Order.transaction_id.is_distinct_from(payment_intent_id),
                ),
            )
            .values(
                status=OrderStatus.PROCESSING,
                payment_status=PaymentStatus.COMPLETED,
                transaction_id=payment_intent_id,
                paid_at=paid_at,
            )
            .returning(Order.id)
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.session.execute(stmt)
            if result.scalar_one_or_none() is None:
                # zero rows updated; commit keeps the caller's loaded orders unexpired
                await self.session.commit()
                return False

            set_committed_value(order, "status", OrderStatus.PROCESSING)
            set_committed_value(order, "payment_status", PaymentStatus.COMPLETED)
            set_committed_value(order, "transaction_id", payment_intent_id)
            set_committed_value(order, "paid_at", paid_at)
            order.add_tracking_event(status=OrderStatus.PROCESSING, description=description)

            await self.session.commit()
            return True
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to claim order payment",
                order_id=str(order_id),
                payment_intent_id=payment_intent_id,
                error=str(e),
            )
            raise OrderUpdateError(
                "Failed to claim order payment",
                order_id=str(order_id),
                payment_intent_id=payment_intent_id,
                error=str(e),
            ) from e
