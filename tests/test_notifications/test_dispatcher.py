"""
Test suite for OrderNotificationDispatcher.

Covers buyer and seller fan-out for paid orders, seller de-duplication,
per-recipient failure isolation and the status-specific notification types.
"""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from marketplace.database.models import NotificationType, OrderStatus, PaymentStatus
from marketplace.services.notifications.dispatcher import OrderNotificationDispatcher
from marketplace.services.notifications.service import (
    NotificationDeliveryError,
    NotificationService,
)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def notification_service() -> AsyncMock:
    return AsyncMock(spec=NotificationService)


@pytest.fixture
def dispatcher(notification_service) -> OrderNotificationDispatcher:
    return OrderNotificationDispatcher(
        notification_service, frontend_url="https://shop.example.com/"
    )


def _sent(notification_service: AsyncMock) -> list[dict]:
    return [call.kwargs for call in notification_service.send_notification.await_args_list]


# ============================================================================
# Paid Order Tests
# ============================================================================


class TestNotifyOrderPaid:
    @pytest.mark.asyncio
    async def test_buyer_and_each_seller_notified_once(
        self, dispatcher, notification_service, make_order, make_item, buyer, seller, second_seller
    ):
        order = make_order(
            items=[
                make_item(uuid.uuid4(), seller.id),
                make_item(uuid.uuid4(), second_seller.id, position=1),
                make_item(uuid.uuid4(), seller.id, position=2),
            ]
        )

        result = await dispatcher.notify_order_paid(order)

        sent = _sent(notification_service)
        assert [s["user_id"] for s in sent] == [buyer.id, seller.id, second_seller.id]
        assert sent[0]["notification_type"] == NotificationType.ORDER_CONFIRMED
        assert sent[0]["action_url"] == f"https://shop.example.com/buying/{order.order_number}"
        assert sent[1]["notification_type"] == NotificationType.NEW_ORDER
        assert sent[1]["action_url"] == (
            f"https://shop.example.com/seller/orders/{order.order_number}"
        )
        assert sent[1]["meta"]["orderId"] == str(order.id)
        assert sent[1]["meta"]["totalAmount"] == float(order.total)
        assert result.sent == [buyer.id, seller.id, second_seller.id]
        assert result.failed == []

    @pytest.mark.asyncio
    async def test_failure_for_one_recipient_does_not_stop_others(
        self, dispatcher, notification_service, make_order, make_item, buyer, seller, second_seller
    ):
        order = make_order(
            items=[
                make_item(uuid.uuid4(), seller.id),
                make_item(uuid.uuid4(), second_seller.id, position=1),
            ]
        )
        notification_service.send_notification.side_effect = [
            NotificationDeliveryError("db down"),
            None,
            None,
        ]

        result = await dispatcher.notify_order_paid(order)

        assert notification_service.send_notification.await_count == 3
        assert result.failed == [buyer.id]
        assert result.sent == [seller.id, second_seller.id]


# ============================================================================
# Other Order Events
# ============================================================================


class TestOtherNotifications:
    @pytest.mark.asyncio
    async def test_payment_failed_goes_to_buyer_only(
        self, dispatcher, notification_service, make_order, buyer
    ):
        order = make_order()

        await dispatcher.notify_payment_failed(order, "Your card was declined.")

        [sent] = _sent(notification_service)
        assert sent["user_id"] == buyer.id
        assert sent["notification_type"] == NotificationType.PAYMENT_FAILED
        assert "Your card was declined." in sent["message"]

    @pytest.mark.asyncio
    async def test_refund_reports_amount(self, dispatcher, notification_service, make_order):
        order = make_order(status=OrderStatus.REFUNDED, payment_status=PaymentStatus.REFUNDED)

        await dispatcher.notify_order_refunded(order, Decimal("25.50"))

        [sent] = _sent(notification_service)
        assert sent["notification_type"] == NotificationType.ORDER_REFUNDED
        assert sent["meta"]["refundAmount"] == 25.5
        assert "$25.50" in sent["message"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,expected_type",
        [
            (OrderStatus.DELIVERED, NotificationType.ORDER_DELIVERED),
            (OrderStatus.CANCELLED, NotificationType.ORDER_CANCELLED),
            (OrderStatus.IN_TRANSIT, NotificationType.ORDER_STATUS_UPDATED),
        ],
    )
    async def test_status_change_type(
        self, dispatcher, notification_service, make_order, status, expected_type
    ):
        order = make_order(status=status)

        await dispatcher.notify_status_changed(order)

        [sent] = _sent(notification_service)
        assert sent["notification_type"] == expected_type
        assert sent["meta"]["status"] == status.value

    @pytest.mark.asyncio
    async def test_missing_recipient_is_skipped(self, dispatcher, notification_service, make_order):
        order = make_order(customer_id=None)

        result = await dispatcher.notify_payment_failed(order, None)

        notification_service.send_notification.assert_not_awaited()
        assert result.sent == []
