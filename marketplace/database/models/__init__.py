"""
Database models package initialization.

All models are imported here so they are registered with the Base metadata
for Alembic and so string-based relationships resolve.
"""

from marketplace.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from marketplace.database.models.notification import (
    Notification,
    NotificationStatus,
    NotificationType,
)
from marketplace.database.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderTrackingEvent,
    PaymentMethod,
    PaymentStatus,
)
from marketplace.database.models.product import (
    DiscountType,
    Product,
    ProductStatus,
    ProductVariant,
)
from marketplace.database.models.transaction import (
    Transaction,
    TransactionStatus,
    TransactionType,
)
from marketplace.database.models.user import User, UserRole

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "DiscountType",
    "Notification",
    "NotificationStatus",
    "NotificationType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderTrackingEvent",
    "PaymentMethod",
    "PaymentStatus",
    "Product",
    "ProductStatus",
    "ProductVariant",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "User",
    "UserRole",
]
