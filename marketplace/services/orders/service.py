"""
Order service orchestrating checkout and fulfillment.

This module implements the OrderService class: checkout turns a cart into
one pending order per seller with frozen line items and computed fees, and
fulfillment actions move orders through the lifecycle enforced by the
OrderStateMachine, notifying the buyer after every change.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from marketplace.core.config import Settings, get_settings
from marketplace.core.logging import get_logger
from marketplace.database.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from marketplace.database.models.product import Product
from marketplace.database.models.user import User, UserRole
from marketplace.schemas.orders import CheckoutItemRequest
from marketplace.services.inventory.repository import ProductRepository
from marketplace.services.notifications.dispatcher import OrderNotificationDispatcher
from marketplace.services.orders.repository import (
    DuplicateOrderNumberError,
    OrderNotFoundError,
    OrderRepository,
)
from marketplace.services.orders.state_machine import (
    TRACKING_DESCRIPTIONS,
    OrderStateMachine,
)

logger = get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 3


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderValidationError(OrderServiceError):
    """Raised when order validation fails."""


class InsufficientStockError(OrderValidationError):
    """Raised when a cart asks for more units than are in stock."""


class OrderAccessError(OrderServiceError):
    """Raised when a user may not see or change an order."""


def stock_bucket(product: Product, color: Optional[str]) -> tuple[uuid.UUID, Optional[str]]:
    """Stock pool a cart line draws from: a color variant or the product itself."""
    variant = product.find_variant(color) if product.has_variants else None
    return product.id, variant.color if variant is not None else None

class OrderService:
    """
    Order service orchestrating checkout and fulfillment.

    Attributes:
        orders: Order repository for data access
        products: Product repository used to price the cart
        dispatcher: Buyer and seller notifications
        state_machine: State machine for order lifecycle management
    """

    def __init__(
        self,
        orders: OrderRepository,
        products: ProductRepository,
        dispatcher: OrderNotificationDispatcher,
        state_machine: Optional[OrderStateMachine] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize order service.

        Args:
            orders: Order repository
            products: Product repository
            dispatcher: Order notification fan-out
            state_machine: Order lifecycle rules
            settings: Fee configuration, defaults to application settings
        """
        self.orders = orders
        self.products = products
        self.dispatcher = dispatcher
        self.state_machine = state_machine or OrderStateMachine()
        self.settings = settings or get_settings()

    async def create_orders(
        self,
        customer: User,
        items: Sequence[CheckoutItemRequest],
        shipping_address: dict[str, Any],
        payment_method: PaymentMethod = PaymentMethod.CARD,
        notes: Optional[str] = None,
    ) -> list[Order]:
        """
        Create one pending order per seller from a cart.

        Line items freeze the product title, image and unit price (variant
        price when the color matches a variant, with the product discount
        applied). Fees are computed per order from its own subtotal. Stock is
        checked against the total quantity the cart asks of each product or
        variant, across all of its lines.

        Args:
            customer: Buyer placing the orders
            items: Cart items
            shipping_address: Delivery address
            payment_method: How the buyer pays
            notes: Buyer notes copied onto every order

        Returns:
            Created orders, in the order their sellers first appear in the cart

        Raises:
            OrderValidationError: If a product is missing or not for sale
            InsufficientStockError: If a product lacks stock
            OrderRepositoryError: If the orders cannot be stored
        """
        customer_id = customer.id
        if not items:
            raise OrderValidationError("Cart is empty", customer_id=str(customer_id))

        products = await self.products.get_products(item.product_id for item in items)

        grouped: dict[uuid.UUID, list[tuple[CheckoutItemRequest, Product]]] = {}
        requested: dict[tuple[uuid.UUID, Optional[str]], int] = {}
        for item in items:
            product = products.get(item.product_id)
            self._validate_item(item, product)
            bucket = stock_bucket(product, item.color)
            requested[bucket] = requested.get(bucket, 0) + item.quantity
            self._check_stock(product, item.color, requested[bucket])
            grouped.setdefault(product.seller_id, []).append((item, product))

        new_orders: list[Order] = []
        for seller_id, lines in grouped.items():
            order = Order(
                id=uuid.uuid4(),
                customer_id=customer_id,
                seller_id=seller_id,
                status=OrderStatus.PENDING,
                payment_method=payment_method,
                payment_status=PaymentStatus.PENDING,
                shipping_address=shipping_address,
                notes=notes,
                items=[
                    OrderItem(
                        position=position,
                        product_id=product.id,
                        seller_id=product.seller_id,
                        title=product.title,
                        price=product.unit_price(item.color),
                        quantity=item.quantity,
                        color=item.color,
                        image_url=product.image_url,
                    )
                    for position, (item, product) in enumerate(lines)
                ],
                tracking_events=[],
            )
            order.apply_pricing(
                shipping_fee=self.settings.default_shipping_fee,
                marketplace_fee_rate=self.settings.marketplace_fee_rate,
                tax_rate=self.settings.tax_rate,
            )
            order.add_tracking_event(
                status=OrderStatus.PENDING,
                description=TRACKING_DESCRIPTIONS[OrderStatus.PENDING],
                actor_id=customer_id,
            )
            new_orders.append(order)

        created = await self._store_orders(new_orders)

        logger.info(
            "Checkout orders created",
            customer_id=str(customer_id),
            order_numbers=[order.order_number for order in created],
            seller_count=len(grouped),
            item_count=len(items),
        )
        return created

    def _validate_item(self, item: CheckoutItemRequest, product: Optional[Product]) -> None:
        if product is None:
            raise OrderValidationError(
                "Product not found",
                code="PRODUCT_NOT_FOUND",
                product_id=str(item.product_id),
            )
        if not product.is_purchasable or product.seller_id is None:
            raise OrderValidationError(
                f"Product is not available for purchase: {product.title}",
                code="PRODUCT_UNAVAILABLE",
                product_id=str(product.id),
            )
        if item.color and product.has_variants and product.find_variant(item.color) is None:
            raise OrderValidationError(
                f"Color '{item.color}' is not available for {product.title}",
                code="VARIANT_NOT_FOUND",
                product_id=str(product.id),
                color=item.color,
            )

    def _check_stock(self, product: Product, color: Optional[str], requested: int) -> None:
        available = product.available_quantity(color)
        if available < requested:
            raise InsufficientStockError(
                f"Only {available} unit(s) of {product.title} in stock",
                code="INSUFFICIENT_STOCK",
                product_id=str(product.id),
                requested=requested,
                available=available,
            )

    async def _store_orders(self, new_orders: list[Order]) -> list[Order]:
        """
        Number and insert checkout orders.

        Order numbers come from a per-day sequence read just before the
        insert. When a concurrent checkout takes the same numbers first, the
        sequence is read again and the insert retried.

        Raises:
            DuplicateOrderNumberError: If every attempt collides
            OrderRepositoryError: If the orders cannot be stored
        """
        today = datetime.now(timezone.utc).date()
        attempt = 0
        while True:
            attempt += 1
            sequence = await self.orders.next_order_sequence(today)
            for offset, order in enumerate(new_orders):
                order.order_number = Order.format_order_number(today, sequence + offset)
            try:
                return await self.orders.create_orders(new_orders)
            except DuplicateOrderNumberError:
                if attempt >= ORDER_NUMBER_ATTEMPTS:
                    raise
                logger.warning(
                    "Order numbers taken by a concurrent checkout, retrying",
                    first_sequence=sequence,
                    attempt=attempt,
                )

    async def get_order(self, order_id: uuid.UUID, user: User) -> Order:
        """
        Get an order the user is involved in.

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderAccessError: If the user is not its buyer, seller, driver or an admin
        """
        order = await self.orders.get_order_by_id(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        if user.role == UserRole.ADMIN or user.id in (
            order.customer_id,
            order.seller_id,
            order.driver_id,
        ):
            return order

        logger.warning(
            "Order access denied",
            order_id=str(order_id),
            user_id=str(user.id),
            role=user.role.value,
        )
        raise OrderAccessError(
            "Not allowed to access this order",
            order_id=str(order_id),
            user_id=str(user.id),
        )

    async def list_orders_for_user(
        self,
        user: User,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Order], int]:
        return await self.orders.list_orders(
            user_id=user.id,
            role=user.role,
            status=status,
            skip=skip,
            limit=limit,
        )

    async def transition_status(
        self,
        order_id: uuid.UUID,
        target_status: OrderStatus,
        actor: User,
        reason: Optional[str] = None,
        location: Optional[str] = None,
    ) -> Order:
        """
        Move an order to a new fulfillment status.

        Sellers change their own orders, drivers the orders assigned to them
        (a driver picking up an unassigned order becomes its driver), and
        admins any order. Refunds are applied by the payment gateway or an
        admin only.

        Args:
            order_id: Order identifier
            target_status: Desired status
            actor: User performing the change
            reason: Optional reason or note
            location: Optional location, reported by drivers

        Returns:
            The updated order

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderAccessError: If the actor may not change the order
            StateTransitionError: If the lifecycle forbids the transition
            OrderRepositoryError: If the order cannot be saved
        """
        order = await self.orders.get_order_by_id(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        self._check_fulfillment_access(order, target_status, actor)

        if (
            actor.role == UserRole.DRIVER
            and order.driver_id is None
            and target_status == OrderStatus.IN_TRANSIT
        ):
            order.driver_id = actor.id

        previous_status = order.status
        self.state_machine.apply_transition(
            order,
            target_status,
            actor_id=actor.id,
            reason=reason,
            location=location,
        )
        await self.orders.save(order)

        logger.info(
            "Order status updated",
            order_id=str(order.id),
            order_number=order.order_number,
            previous_status=previous_status.value,
            status=order.status.value,
            actor_id=str(actor.id),
        )

        await self._notify_status_changed(order)
        return order

    def _check_fulfillment_access(
        self, order: Order, target_status: OrderStatus, actor: User
    ) -> None:
        if actor.role == UserRole.ADMIN:
            return

        allowed = False
        if target_status != OrderStatus.REFUNDED:
            if actor.role == UserRole.SELLER:
                allowed = order.seller_id == actor.id
            elif actor.role == UserRole.DRIVER:
                allowed = order.driver_id == actor.id or (
                    order.driver_id is None and target_status == OrderStatus.IN_TRANSIT
                )

        if not allowed:
            logger.warning(
                "Order status change denied",
                order_id=str(order.id),
                actor_id=str(actor.id),
                role=actor.role.value,
                target_status=target_status.value,
            )
            raise OrderAccessError(
                "Not allowed to change this order",
                order_id=str(order.id),
                actor_id=str(actor.id),
                target_status=target_status.value,
            )

    async def cancel_order(self, order_id: uuid.UUID, reason: str, actor: User) -> Order:
        """
        Cancel an order on behalf of its buyer or an admin.

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderAccessError: If the actor is neither the buyer nor an admin
            StateTransitionError: If the order can no longer be cancelled
        """
        order = await self.orders.get_order_by_id(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        if actor.role != UserRole.ADMIN and order.customer_id != actor.id:
            raise OrderAccessError(
                "Only the buyer or an admin can cancel this order",
                order_id=str(order_id),
                actor_id=str(actor.id),
            )

        self.state_machine.apply_transition(
            order, OrderStatus.CANCELLED, actor_id=actor.id, reason=reason
        )
        await self.orders.save(order)

        logger.info(
            "Order cancelled",
            order_id=str(order.id),
            order_number=order.order_number,
            actor_id=str(actor.id),
            payment_status=order.payment_status.value,
        )

        await self._notify_status_changed(order)
        return order

    async def _notify_status_changed(self, order: Order) -> None:
        order_id = order.id
        try:
            await self.dispatcher.notify_status_changed(order)
        except Exception as e:
            logger.error(
                "Status notification failed",
                order_id=str(order_id),
                error=str(e),
                error_type=type(e).__name__,
            )
