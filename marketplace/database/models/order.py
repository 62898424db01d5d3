"""
Order models for checkout, payment reconciliation and fulfillment tracking.

An ``Order`` owns its line items and its tracking history. Line items are
frozen copies of the product at checkout time, so later catalog edits never
change historical orders. The monetary summary is recomputed from the line
items before every save.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import (
    EMPTY_JSON_DEFAULT,
    BaseModel,
    JSONDocument,
    enum_values,
)

CENTS = Decimal("0.01")
ORDER_NUMBER_PREFIX = "ORD"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value: Any) -> Decimal:
    """Coerce a numeric value to a two-decimal ``Decimal``."""
    return Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


class OrderStatus(str, Enum):
    """
    Order lifecycle status.

    Attributes:
        PENDING: Created at checkout, awaiting payment
        PROCESSING: Payment captured, seller preparing the order
        IN_TRANSIT: Picked up by a driver
        OUT_FOR_DELIVERY: On the final delivery leg
        DELIVERED: Handed to the buyer
        CANCELLED: Cancelled by the buyer, an admin or a failed payment
        REFUNDED: Payment returned after delivery
    """

    PENDING = "pending"
    PROCESSING = "processing"
    IN_TRANSIT = "in-transit"
    OUT_FOR_DELIVERY = "out-for-delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """
        Create OrderStatus from string value.

        Underscores are accepted in place of hyphens.

        Raises:
            ValueError: If value is not a valid status
        """
        normalized = value.strip().lower().replace("_", "-")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Invalid order status: {value}")

    @property
    def is_terminal(self) -> bool:
        return self in (
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
            OrderStatus.REFUNDED,
        )


class PaymentStatus(str, Enum):
    """Payment status embedded on an order."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    """How the buyer pays for an order."""

    CARD = "card"
    CASH_ON_DELIVERY = "cash_on_delivery"


class Order(BaseModel):
    """
    Customer order for the products of a single seller.

    Attributes:
        order_number: Human-readable number, ``ORD{YYYYMMDD}{NNNN}``
        customer_id: Buyer who placed the order
        seller_id: Seller fulfilling the order
        driver_id: Driver assigned for delivery
        status: Current lifecycle status
        payment_method: Card or cash on delivery
        payment_status: Embedded payment status
        transaction_id: Gateway payment intent id, the idempotency marker
        paid_at: When the payment was confirmed
        subtotal: Sum of line item price times quantity
        shipping_fee: Flat shipping fee
        marketplace_fee: Marketplace commission
        taxes: Sales tax
        total: subtotal + shipping_fee + marketplace_fee + taxes
        shipping_address: Delivery address
        cancel_reason: Why the order was cancelled
        refund_reason: Why the payment was refunded
        items: Frozen line items
        tracking_events: Append-only status history
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Buyer who placed the order",
    )

    seller_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Seller fulfilling the order",
    )

    driver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Driver assigned for delivery",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", values_callable=enum_values),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method", values_callable=enum_values),
        nullable=False,
        default=PaymentMethod.CARD,
        comment="Payment method",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status", values_callable=enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
        comment="Current payment status",
    )

    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Gateway payment intent identifier",
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the payment was confirmed",
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Sum of line items",
    )

    shipping_fee: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Shipping fee",
    )

    marketplace_fee: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Marketplace commission",
    )

    taxes: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Sales tax",
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Order total",
    )

    shipping_address: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=dict,
        server_default=EMPTY_JSON_DEFAULT,
        comment="Delivery address",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Buyer notes",
    )

    cancel_reason: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Cancellation reason",
    )

    refund_reason: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Refund reason",
    )

    estimated_delivery_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Estimated delivery date",
    )

    actual_delivery_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Actual delivery date",
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    tracking_events: Mapped[list["OrderTrackingEvent"]] = relationship(
        "OrderTrackingEvent",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderTrackingEvent.occurred_at",
    )

    __table_args__ = (
        Index("ix_orders_customer_status", "customer_id", "status"),
        Index("ix_orders_seller_status", "seller_id", "status"),
        Index("ix_orders_status_created", "status", "created_at"),
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint("shipping_fee >= 0", name="ck_orders_shipping_fee_non_negative"),
        CheckConstraint(
            "marketplace_fee >= 0", name="ck_orders_marketplace_fee_non_negative"
        ),
        CheckConstraint("taxes >= 0", name="ck_orders_taxes_non_negative"),
        CheckConstraint(
            "total = subtotal + shipping_fee + marketplace_fee + taxes",
            name="ck_orders_total_matches_summary",
        ),
        {"comment": "Customer orders with payment and tracking state"},
    )

    def __repr__(self) -> str:
        status = self.status.value if self.status else None
        return (
            f"<Order(id={self.id}, order_number={self.order_number}, "
            f"status={status}, total={self.total})>"
        )

    @staticmethod
    def format_order_number(day: date, sequence: int) -> str:
        """
        Build an order number from the creation day and daily sequence.

        Example:
            >>> Order.format_order_number(date(2024, 3, 9), 7)
            'ORD202403090007'
        """
        return f"{ORDER_NUMBER_PREFIX}{day:%Y%m%d}{sequence:04d}"

    @property
    def seller_ids(self) -> list[uuid.UUID]:
        """Distinct seller ids across line items, in first-seen order."""
        seen: list[uuid.UUID] = []
        for item in self.items or []:
            if item.seller_id is not None and item.seller_id not in seen:
                seen.append(item.seller_id)
        return seen

    def recalculate_totals(self) -> Decimal:
        """
        Recompute subtotal and total from line items and stored fees.

        Must be called before every save so that total always equals
        subtotal + shipping_fee + marketplace_fee + taxes.

        Returns:
            The recomputed total
        """
        self.subtotal = to_money(
            sum((to_money(item.price) * item.quantity for item in self.items or []), Decimal("0"))
        )
        self.shipping_fee = to_money(self.shipping_fee)
        self.marketplace_fee = to_money(self.marketplace_fee)
        self.taxes = to_money(self.taxes)
        self.total = self.subtotal + self.shipping_fee + self.marketplace_fee + self.taxes
        return self.total

    def apply_pricing(
        self,
        shipping_fee: Decimal,
        marketplace_fee_rate: Decimal,
        tax_rate: Decimal,
    ) -> Decimal:
        """
        Derive fees from the current line items, then recompute totals.

        Args:
            shipping_fee: Flat shipping fee
            marketplace_fee_rate: Commission as a fraction of the subtotal
            tax_rate: Tax as a fraction of the subtotal

        Returns:
            The recomputed total
        """
        self.recalculate_totals()
        self.shipping_fee = to_money(shipping_fee)
        self.marketplace_fee = to_money(self.subtotal * marketplace_fee_rate)
        self.taxes = to_money(self.subtotal * tax_rate)
        return self.recalculate_totals()

    def is_paid_by(self, payment_intent_id: str) -> bool:
        """Whether this payment intent was already applied to the order."""
        return (
            self.payment_status == PaymentStatus.COMPLETED
            and self.transaction_id == payment_intent_id
        )

    def add_tracking_event(
        self,
        status: OrderStatus,
        description: str,
        location: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
        occurred_at: Optional[datetime] = None,
    ) -> "OrderTrackingEvent":
        """
        Append an entry to the tracking history.

        Args:
            status: Status the order moved to
            description: Human-readable description of the change
            location: Optional location, reported by drivers
            actor_id: User who caused the change, None for system events
            occurred_at: Event time, defaults to now

        Returns:
            The appended tracking event
        """
        event = OrderTrackingEvent(
            status=status,
            description=description,
            location=location,
            actor_id=actor_id,
            occurred_at=occurred_at or _utcnow(),
        )
        if self.tracking_events is None:
            self.tracking_events = []
        self.tracking_events.append(event)
        return event


class OrderItem(BaseModel):
    """
    Line item snapshot taken at checkout.

    Attributes:
        order_id: Owning order
        position: Index of the item within the order
        product_id: Live product, used for inventory adjustment
        seller_id: Seller of the product at checkout
        title: Product title at checkout
        price: Unit price paid, discount applied
        quantity: Units ordered
        color: Variant selector, if the buyer chose one
        image_url: Product image at checkout
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning order",
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Position of the item within the order",
    )

    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Live product reference",
    )

    seller_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Seller of the product",
    )

    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product title snapshot",
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Unit price snapshot",
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Units ordered",
    )

    color: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Variant color selector",
    )

    image_url: Mapped[Optional[str]] = mapped_column(
        String(1024),
        nullable=True,
        comment="Product image snapshot",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("price >= 0", name="ck_order_items_price_non_negative"),
        {"comment": "Frozen line items of an order"},
    )

    @property
    def line_total(self) -> Decimal:
        return to_money(self.price) * self.quantity

    def __repr__(self) -> str:
        return (
            f"<OrderItem(order_id={self.order_id}, product_id={self.product_id}, "
            f"quantity={self.quantity}, color={self.color!r})>"
        )


class OrderTrackingEvent(BaseModel):
    """
    Entry in an order's append-only tracking history.

    Attributes:
        order_id: Owning order
        status: Status the order moved to
        description: Human-readable description
        location: Optional location reported by the driver
        actor_id: User who made the change
        occurred_at: When the change happened
    """

    __tablename__ = "order_tracking_events"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning order",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", values_callable=enum_values),
        nullable=False,
        comment="Status the order moved to",
    )

    description: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Description of the change",
    )

    location: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Reported location",
    )

    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="User who made the change",
    )

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        comment="When the change happened",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="tracking_events")

    __table_args__ = (
        Index("ix_order_tracking_events_order_occurred", "order_id", "occurred_at"),
        {"comment": "Order status history"},
    )

    def __repr__(self) -> str:
        status = self.status.value if self.status else None
        return f"<OrderTrackingEvent(order_id={self.order_id}, status={status})>"
