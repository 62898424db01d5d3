"""
Tests for order and product model behavior: totals, order numbers,
discounts and variant lookup.
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from marketplace.database.models import DiscountType, Order, OrderStatus, PaymentStatus
from marketplace.database.models.product import apply_discount


# ============================================================================
# Order Totals
# ============================================================================


class TestOrderTotals:
    """Order totals are always derived from line items and fees."""

    def test_apply_pricing_computes_fees_from_subtotal(self, make_order, make_item, seller):
        order = make_order(
            items=[
                make_item(uuid.uuid4(), seller.id, price="100.00", quantity=2),
                make_item(uuid.uuid4(), seller.id, price="50.00", quantity=1, position=1),
            ]
        )

        assert order.subtotal == Decimal("250.00")
        assert order.shipping_fee == Decimal("10.00")
        assert order.marketplace_fee == Decimal("25.00")
        assert order.taxes == Decimal("20.00")
        assert order.total == Decimal("305.00")

    def test_recalculate_totals_after_item_change(self, make_order):
        order = make_order()
        order.items[0].quantity = 3

        total = order.recalculate_totals()

        assert order.subtotal == Decimal("300.00")
        assert total == order.subtotal + order.shipping_fee + order.marketplace_fee + order.taxes

    def test_fees_rounded_to_cents(self, make_order, make_item, seller):
        order = make_order(items=[make_item(uuid.uuid4(), seller.id, price="0.35", quantity=1)])

        assert order.marketplace_fee == Decimal("0.04")
        assert order.taxes == Decimal("0.03")
        assert order.total == Decimal("10.42")

    def test_order_without_items_costs_only_shipping(self, make_order):
        order = make_order(items=[])

        assert order.subtotal == Decimal("0.00")
        assert order.total == Decimal("10.00")


# ============================================================================
# Order Helpers
# ============================================================================


class TestOrderHelpers:
    def test_format_order_number(self):
        assert Order.format_order_number(date(2024, 3, 9), 7) == "ORD202403090007"

    def test_seller_ids_are_distinct_in_first_seen_order(
        self, make_order, make_item, seller, second_seller
    ):
        order = make_order(
            items=[
                make_item(uuid.uuid4(), second_seller.id),
                make_item(uuid.uuid4(), seller.id, position=1),
                make_item(uuid.uuid4(), second_seller.id, position=2),
                make_item(uuid.uuid4(), None, position=3),
            ]
        )

        assert order.seller_ids == [second_seller.id, seller.id]

    def test_is_paid_by_requires_matching_intent(self, make_order):
        order = make_order(
            status=OrderStatus.PROCESSING,
            payment_status=PaymentStatus.COMPLETED,
            transaction_id="pi_1",
        )

        assert order.is_paid_by("pi_1")
        assert not order.is_paid_by("pi_2")

    def test_is_paid_by_false_while_pending(self, make_order):
        order = make_order(transaction_id="pi_1")

        assert not order.is_paid_by("pi_1")

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("in_transit", OrderStatus.IN_TRANSIT),
            ("OUT-FOR-DELIVERY", OrderStatus.OUT_FOR_DELIVERY),
            (" delivered ", OrderStatus.DELIVERED),
        ],
    )
    def test_status_from_string(self, value, expected):
        assert OrderStatus.from_string(value) == expected

    def test_status_from_string_rejects_unknown(self):
        with pytest.raises(ValueError, match="Invalid order status"):
            OrderStatus.from_string("shipped")


# ============================================================================
# Product Pricing and Variants
# ============================================================================


class TestProductPricing:
    @pytest.mark.parametrize(
        "discount_type,value,expected",
        [
            (DiscountType.NONE, "5", "40.00"),
            (DiscountType.FLAT, "5", "35.00"),
            (DiscountType.PERCENTAGE, "25", "30.00"),
            (DiscountType.FLAT, "60", "0.00"),
        ],
    )
    def test_apply_discount(self, discount_type, value, expected):
        assert apply_discount(Decimal("40.00"), discount_type, Decimal(value)) == Decimal(expected)

    def test_unit_price_uses_matching_variant(self, make_product, seller):
        product = make_product(seller.id, price="40.00", variants=[("Red", "45.00", 3)])

        assert product.unit_price("red") == Decimal("45.00")
        assert product.unit_price("Blue") == Decimal("40.00")
        assert product.unit_price(None) == Decimal("40.00")

    def test_unit_price_applies_discount_to_variant(self, make_product, seller):
        product = make_product(
            seller.id,
            price="40.00",
            variants=[("Red", "50.00", 3)],
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("10"),
        )

        assert product.unit_price("Red") == Decimal("45.00")

    def test_find_variant_ignores_case_and_whitespace(self, make_product, seller):
        product = make_product(seller.id, variants=[("Midnight Blue", "40.00", 2)])

        variant = product.find_variant("  midnight BLUE ")

        assert variant is not None
        assert variant.color == "Midnight Blue"

    def test_available_quantity_falls_back_to_product(self, make_product, seller):
        product = make_product(seller.id, quantity=7, variants=[("Red", "40.00", 2)])

        assert product.available_quantity("Red") == 2
        assert product.available_quantity("Green") == 7
        assert product.available_quantity(None) == 7
