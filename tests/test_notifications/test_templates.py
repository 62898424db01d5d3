"""
Tests for the notification template engine.
"""

from decimal import Decimal

import pytest

from marketplace.database.models import NotificationType
from marketplace.services.notifications.templates import (
    NOTIFICATION_TEMPLATES,
    TemplateEngine,
    TemplateNotFoundError,
    TemplateRenderError,
)


@pytest.fixture
def engine() -> TemplateEngine:
    return TemplateEngine()


class TestRender:
    def test_every_notification_type_has_templates(self):
        for notification_type in NotificationType:
            assert f"{notification_type.value}/title" in NOTIFICATION_TEMPLATES
            assert f"{notification_type.value}/message" in NOTIFICATION_TEMPLATES

    def test_order_confirmed(self, engine):
        title, message = engine.render(
            NotificationType.ORDER_CONFIRMED, {"order_number": "ORD202401010001"}
        )

        assert title == "Order Confirmed"
        assert message == (
            "Your order #ORD202401010001 has been confirmed and is being processed."
        )

    def test_new_order_formats_total(self, engine):
        _, message = engine.render(
            NotificationType.NEW_ORDER,
            {"order_number": "ORD202401010001", "total": Decimal("1234.5")},
        )

        assert "totalling $1,234.50" in message

    def test_payment_failed_with_and_without_reason(self, engine):
        _, with_reason = engine.render(
            NotificationType.PAYMENT_FAILED,
            {"order_number": "ORD1", "reason": "Your card was declined."},
        )
        _, without_reason = engine.render(
            NotificationType.PAYMENT_FAILED, {"order_number": "ORD1", "reason": None}
        )

        assert "failed: Your card was declined." in with_reason
        assert without_reason == "Payment for order #ORD1 failed. Please try again."

    def test_status_update_humanizes_status(self, engine):
        _, message = engine.render(
            NotificationType.ORDER_STATUS_UPDATED,
            {"order_number": "ORD1", "status": "out-for-delivery"},
        )

        assert message == "Your order #ORD1 is now out for delivery."

    def test_missing_variable_is_a_render_error(self, engine):
        with pytest.raises(TemplateRenderError) as exc_info:
            engine.render(NotificationType.ORDER_REFUNDED, {"order_number": "ORD1"})

        assert exc_info.value.template_name == "ORDER_REFUNDED"

    def test_missing_template(self):
        engine = TemplateEngine(templates={"ORDER_CONFIRMED/title": "Hi"})

        with pytest.raises(TemplateNotFoundError):
            engine.render(NotificationType.ORDER_CONFIRMED, {"order_number": "ORD1"})
