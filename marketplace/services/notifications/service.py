"""
Notification service persisting in-app notifications.

This module provides the NotificationService class that stores notifications
addressed to a single user and manages their read state. Delivery failures
are raised as ``NotificationDeliveryError`` so callers can log them and carry
on with other recipients.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.logging import get_logger
from marketplace.database.models.notification import (
    Notification,
    NotificationStatus,
    NotificationType,
)

logger = get_logger(__name__)


class NotificationServiceError(Exception):
    """Base exception for notification service errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """
        Initialize notification service error.

        Args:
            message: Error message
            **context: Additional error context
        """
        super().__init__(message)
        self.context = context


class NotificationDeliveryError(NotificationServiceError):
    """Exception for notification delivery failures."""


class NotificationValidationError(NotificationServiceError):
    """Exception for notification validation failures."""


class NotificationNotFoundError(NotificationServiceError):
    """Raised when a notification does not exist for the user."""


class NotificationService:
    """
    Stores notifications and tracks whether users have read them.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        """
        Initialize notification service.

        Args:
            db_session: Database session for persistence
        """
        self.db = db_session

    async def send_notification(
        self,
        user_id: UUID,
        title: str,
        message: str,
        notification_type: NotificationType,
        action_url: Optional[str] = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> Notification:
        """
        Persist a notification for one user.

        Args:
            user_id: Recipient
            title: Notification title
            message: Notification body
            notification_type: Type tag
            action_url: Optional storefront link
            meta: Optional extra data

        Returns:
            The stored notification

        Raises:
            NotificationValidationError: If title or message is empty
            NotificationDeliveryError: If the notification cannot be stored
        """
        if not title or not message:
            raise NotificationValidationError(
                "Notification title and message are required",
                user_id=str(user_id),
                notification_type=notification_type.value,
            )

        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            action_url=action_url,
            meta=meta or {},
            is_read=False,
            status=NotificationStatus.SENT,
        )

        try:
            self.db.add(notification)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Notification delivery failed",
                user_id=str(user_id),
                notification_type=notification_type.value,
                error=str(e),
            )
            raise NotificationDeliveryError(
                f"Failed to deliver notification: {e}",
                user_id=str(user_id),
                notification_type=notification_type.value,
            ) from e

        logger.info(
            "Notification sent",
            user_id=str(user_id),
            notification_type=notification_type.value,
            notification_id=str(notification.id),
        )
        return notification

    async def list_notifications(
        self,
        user_id: UUID,
        unread_only: bool = False,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Notification], int]:
        """
        List a user's notifications, newest first.

        Args:
            user_id: Recipient
            unread_only: Only return unread notifications
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (notifications, total_count)
        """
        conditions = [Notification.user_id == user_id]
        if unread_only:
            conditions.append(Notification.is_read.is_(False))

        try:
            result = await self.db.execute(
                select(Notification)
                .where(*conditions)
                .order_by(Notification.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            count_result = await self.db.execute(
                select(func.count()).select_from(Notification).where(*conditions)
            )
            return list(result.scalars().all()), int(count_result.scalar_one())
        except SQLAlchemyError as e:
            logger.error("Failed to list notifications", user_id=str(user_id), error=str(e))
            raise NotificationServiceError(
                "Failed to list notifications", user_id=str(user_id)
            ) from e

    async def count_unread(self, user_id: UUID) -> int:
        try:
            result = await self.db.execute(
                select(func.count())
                .select_from(Notification)
                .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            )
            return int(result.scalar_one())
        except SQLAlchemyError as e:
            logger.error("Failed to count unread notifications", user_id=str(user_id), error=str(e))
            raise NotificationServiceError(
                "Failed to count unread notifications", user_id=str(user_id)
            ) from e

    async def mark_as_read(self, notification_id: UUID, user_id: UUID) -> Notification:
        """
        Mark one of the user's notifications as read.

        Raises:
            NotificationNotFoundError: If the notification does not belong to the user
        """
        try:
            result = await self.db.execute(
                select(Notification).where(
                    Notification.id == notification_id,
                    Notification.user_id == user_id,
                )
            )
            notification = result.scalar_one_or_none()
            if notification is None:
                raise NotificationNotFoundError(
                    "Notification not found",
                    notification_id=str(notification_id),
                    user_id=str(user_id),
                )

            if not notification.is_read:
                notification.is_read = True
                notification.read_at = datetime.now(timezone.utc)
                await self.db.commit()

            return notification
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Failed to mark notification as read",
                notification_id=str(notification_id),
                error=str(e),
            )
            raise NotificationServiceError(
                "Failed to mark notification as read",
                notification_id=str(notification_id),
            ) from e

    async def mark_all_as_read(self, user_id: UUID) -> int:
        """
        Mark every unread notification of a user as read.

        Returns:
            Number of notifications updated
        """
        try:
            result = await self.db.execute(
                update(Notification)
                .where(Notification.user_id == user_id, Notification.is_read.is_(False))
                .values(is_read=True, read_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            updated = result.rowcount or 0
            logger.info("Notifications marked as read", user_id=str(user_id), count=updated)
            return updated
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to mark notifications as read", user_id=str(user_id), error=str(e))
            raise NotificationServiceError(
                "Failed to mark notifications as read", user_id=str(user_id)
            ) from e
