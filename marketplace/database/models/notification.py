"""
In-app notification model.

Notifications are addressed to a single user and carry a type tag, an
optional link into the storefront and free-form metadata.
"""

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.base import (
    EMPTY_JSON_DEFAULT,
    BaseModel,
    JSONDocument,
    enum_values,
)


class NotificationType(str, enum.Enum):
    """Notification type tags shown by the storefront."""

    NEW_ORDER = "NEW_ORDER"
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    ORDER_REFUNDED = "ORDER_REFUNDED"
    ORDER_STATUS_UPDATED = "ORDER_STATUS_UPDATED"
    PAYMENT_FAILED = "PAYMENT_FAILED"

    @classmethod
    def from_string(cls, value: str) -> "NotificationType":
        """
        Convert string to NotificationType enum.

        Raises:
            ValueError: If value is not a valid notification type
        """
        try:
            return cls[value.upper()]
        except KeyError:
            raise ValueError(f"Invalid notification type: {value}")


class NotificationStatus(str, enum.Enum):
    """Delivery status of a notification."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Notification(BaseModel):
    """
    Notification addressed to one user.

    Attributes:
        user_id: Recipient
        type: Notification type tag
        title: Short title
        message: Body text
        action_url: Storefront link opened from the notification
        meta: Extra data such as order id and order number
        is_read: Whether the recipient has read it
        read_at: When it was marked read
        status: Delivery status
    """

    __tablename__ = "notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
        comment="Recipient user",
    )

    type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType, name="notification_type", values_callable=enum_values),
        nullable=False,
        index=True,
        comment="Notification type",
    )

    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Notification title",
    )

    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Notification message",
    )

    action_url: Mapped[Optional[str]] = mapped_column(
        String(1024),
        nullable=True,
        comment="Storefront link",
    )

    meta: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=dict,
        server_default=EMPTY_JSON_DEFAULT,
        comment="Additional notification data",
    )

    is_read: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether the notification was read",
    )

    read_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the notification was read",
    )

    status: Mapped[NotificationStatus] = mapped_column(
        SQLEnum(
            NotificationStatus, name="notification_status", values_callable=enum_values
        ),
        nullable=False,
        default=NotificationStatus.PENDING,
        comment="Delivery status",
    )

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
        Index("ix_notifications_user_created", "user_id", "created_at"),
        {"comment": "In-app user notifications"},
    )

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, user_id={self.user_id}, "
            f"type={self.type}, is_read={self.is_read})>"
        )
