"""
Order notification fan-out.

Turns order events into in-app notifications for the buyer and the sellers
involved. Each recipient is notified independently: a failure for one
recipient is logged and never prevents the others from being notified.
"""

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from marketplace.core.config import get_settings
from marketplace.core.logging import get_logger
from marketplace.database.models.notification import NotificationType
from marketplace.database.models.order import Order, OrderStatus
from marketplace.services.notifications.service import NotificationService
from marketplace.services.notifications.templates import (
    TemplateEngine,
    get_template_engine,
)

logger = get_logger(__name__)


class DispatchResult(BaseModel):
    """Recipients that were notified and recipients whose send failed."""

    sent: list[UUID] = Field(default_factory=list)
    failed: list[UUID] = Field(default_factory=list)

    def merge(self, other: "DispatchResult") -> "DispatchResult":
        return DispatchResult(sent=self.sent + other.sent, failed=self.failed + other.failed)


class OrderNotificationDispatcher:
    """
    Sends order lifecycle notifications to buyers and sellers.
    """

    def __init__(
        self,
        notifications: NotificationService,
        template_engine: Optional[TemplateEngine] = None,
        frontend_url: Optional[str] = None,
    ):
        """
        Args:
            notifications: Service that stores the notifications
            template_engine: Renders titles and messages
            frontend_url: Storefront base URL for action links
        """
        self.notifications = notifications
        self.templates = template_engine or get_template_engine()
        self.frontend_url = (frontend_url or get_settings().frontend_url).rstrip("/")

    def buyer_order_url(self, order: Order) -> str:
        return f"{self.frontend_url}/buying/{order.order_number}"

    def seller_order_url(self, order: Order) -> str:
        return f"{self.frontend_url}/seller/orders/{order.order_number}"

    async def notify_order_paid(self, order: Order) -> DispatchResult:
        """
        Confirm a paid order to the buyer and alert every distinct seller.

        Order values are read before the first send, since a failed send
        rolls back the session and expires the order.

        Args:
            order: Order whose payment was just captured

        Returns:
            Which recipients were notified
        """
        order_id = order.id
        order_number = order.order_number
        customer_id = order.customer_id
        seller_ids = order.seller_ids
        total = order.total
        buyer_url = self.buyer_order_url(order)
        seller_url = self.seller_order_url(order)

        result = DispatchResult()
        base_meta = {"orderId": str(order_id), "orderNumber": order_number}

        await self._send(
            result,
            recipient_id=customer_id,
            notification_type=NotificationType.ORDER_CONFIRMED,
            context={"order_number": order_number},
            action_url=buyer_url,
            meta=base_meta,
            order_id=order_id,
        )

        seller_meta = {**base_meta, "totalAmount": float(total)}
        for seller_id in seller_ids:
            await self._send(
                result,
                recipient_id=seller_id,
                notification_type=NotificationType.NEW_ORDER,
                context={"order_number": order_number, "total": total},
                action_url=seller_url,
                meta=seller_meta,
                order_id=order_id,
            )

        logger.info(
            "Order paid notifications dispatched",
            order_id=str(order_id),
            sent=len(result.sent),
            failed=len(result.failed),
        )
        return result

    async def notify_payment_failed(
        self, order: Order, reason: Optional[str]
    ) -> DispatchResult:
        result = DispatchResult()
        await self._send(
            result,
            recipient_id=order.customer_id,
            notification_type=NotificationType.PAYMENT_FAILED,
            context={"order_number": order.order_number, "reason": reason},
            action_url=self.buyer_order_url(order),
            meta={"orderId": str(order.id), "orderNumber": order.order_number},
            order_id=order.id,
        )
        return result

    async def notify_order_refunded(self, order: Order, amount: Any) -> DispatchResult:
        result = DispatchResult()
        await self._send(
            result,
            recipient_id=order.customer_id,
            notification_type=NotificationType.ORDER_REFUNDED,
            context={"order_number": order.order_number, "amount": amount},
            action_url=self.buyer_order_url(order),
            meta={
                "orderId": str(order.id),
                "orderNumber": order.order_number,
                "refundAmount": float(amount),
            },
            order_id=order.id,
        )
        return result

    async def notify_status_changed(self, order: Order) -> DispatchResult:
        """
        Tell the buyer about a fulfillment status change.

        Delivered and cancelled orders get dedicated notification types; every
        other status uses the generic status update.
        """
        if order.status == OrderStatus.DELIVERED:
            notification_type = NotificationType.ORDER_DELIVERED
        elif order.status == OrderStatus.CANCELLED:
            notification_type = NotificationType.ORDER_CANCELLED
        else:
            notification_type = NotificationType.ORDER_STATUS_UPDATED

        result = DispatchResult()
        await self._send(
            result,
            recipient_id=order.customer_id,
            notification_type=notification_type,
            context={
                "order_number": order.order_number,
                "status": order.status.value,
                "reason": order.cancel_reason,
            },
            action_url=self.buyer_order_url(order),
            meta={
                "orderId": str(order.id),
                "orderNumber": order.order_number,
                "status": order.status.value,
            },
            order_id=order.id,
        )
        return result

    async def _send(
        self,
        result: DispatchResult,
        recipient_id: Optional[UUID],
        notification_type: NotificationType,
        context: dict[str, Any],
        action_url: str,
        meta: dict[str, Any],
        order_id: UUID,
    ) -> None:
        if recipient_id is None:
            logger.warning(
                "Notification recipient missing",
                order_id=str(order_id),
                notification_type=notification_type.value,
            )
            return

        try:
            title, message = self.templates.render(notification_type, context)
            await self.notifications.send_notification(
                user_id=recipient_id,
                title=title,
                message=message,
                notification_type=notification_type,
                action_url=action_url,
                meta=meta,
            )
            result.sent.append(recipient_id)
        except Exception as e:
            result.failed.append(recipient_id)
            logger.error(
                "Failed to send order notification",
                order_id=str(order_id),
                recipient_id=str(recipient_id),
                notification_type=notification_type.value,
                error=str(e),
                error_type=type(e).__name__,
            )
