"""
Test suite for InventoryAdjuster.

Covers variant and product-level decrements, fallback when the color has
no variant, clamping of oversold stock and per-item failure isolation.
"""

import uuid
from unittest.mock import AsyncMock

import pytest

from marketplace.services.inventory.adjuster import InventoryAdjuster, decrement_stock
from marketplace.services.inventory.repository import (
    ProductRepository,
    ProductRepositoryError,
)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def product_repository() -> AsyncMock:
    repository = AsyncMock(spec=ProductRepository)
    repository.save.side_effect = lambda product: product
    return repository


@pytest.fixture
def adjuster(product_repository) -> InventoryAdjuster:
    return InventoryAdjuster(product_repository)


# ============================================================================
# Pure Helpers
# ============================================================================


class TestDecrementStock:
    @pytest.mark.parametrize(
        "current,requested,expected",
        [(10, 3, (7, 0)), (3, 3, (0, 0)), (2, 5, (0, 3)), (0, 1, (0, 1))],
    )
    def test_decrement_stock(self, current, requested, expected):
        assert decrement_stock(current, requested) == expected


# ============================================================================
# Single Item Adjustments
# ============================================================================


class TestApplyToProduct:
    def test_decrements_matching_variant(self, adjuster, make_product, make_item, seller):
        product = make_product(seller.id, quantity=20, variants=[("Red", "40.00", 5)])
        item = make_item(product.id, seller.id, quantity=2, color=" red ")

        adjustment = adjuster.apply_to_product(product, item)

        variant = product.variants[0]
        assert variant.quantity == 3
        assert variant.out_of_stock is False
        assert product.quantity == 20
        assert product.sold == 2
        assert adjustment.used_variant is True
        assert adjustment.color == "Red"

    def test_product_without_variants_uses_top_level_stock(
        self, adjuster, make_product, make_item, seller
    ):
        product = make_product(seller.id, quantity=4)
        item = make_item(product.id, seller.id, quantity=4, color="Red")

        adjustment = adjuster.apply_to_product(product, item)

        assert product.quantity == 0
        assert product.out_of_stock is True
        assert adjustment.used_variant is False
        assert adjustment.out_of_stock is True

    def test_unmatched_color_falls_back_to_product(
        self, adjuster, make_product, make_item, seller
    ):
        product = make_product(seller.id, quantity=10, variants=[("Red", "40.00", 5)])
        item = make_item(product.id, seller.id, quantity=3, color="Green")

        adjuster.apply_to_product(product, item)

        assert product.quantity == 7
        assert product.variants[0].quantity == 5
        assert product.sold == 3

    def test_item_without_color_uses_product_stock(
        self, adjuster, make_product, make_item, seller
    ):
        product = make_product(seller.id, quantity=10, variants=[("Red", "40.00", 5)])
        item = make_item(product.id, seller.id, quantity=1)

        adjuster.apply_to_product(product, item)

        assert product.quantity == 9
        assert product.variants[0].quantity == 5

    def test_oversell_clamps_at_zero(self, adjuster, make_product, make_item, seller):
        product = make_product(seller.id, quantity=10, variants=[("Red", "40.00", 1)])
        item = make_item(product.id, seller.id, quantity=3, color="Red")

        adjustment = adjuster.apply_to_product(product, item)

        assert product.variants[0].quantity == 0
        assert product.variants[0].out_of_stock is True
        assert adjustment.oversold == 2
        assert product.sold == 3


# ============================================================================
# Whole Order Adjustments
# ============================================================================


class TestAdjustForOrder:
    @pytest.mark.asyncio
    async def test_adjusts_every_item_and_saves(
        self, adjuster, product_repository, make_product, make_item, make_order, seller
    ):
        shoe = make_product(seller.id, quantity=5)
        hat = make_product(seller.id, quantity=2, variants=[("Black", "15.00", 4)])
        order = make_order(
            items=[
                make_item(shoe.id, seller.id, quantity=2),
                make_item(hat.id, seller.id, quantity=1, color="black", position=1),
            ]
        )
        products = {shoe.id: shoe, hat.id: hat}
        product_repository.get_product.side_effect = lambda product_id: products.get(product_id)

        adjustments = await adjuster.adjust_for_order(order)

        assert [a.product_id for a in adjustments] == [shoe.id, hat.id]
        assert shoe.quantity == 3
        assert hat.variants[0].quantity == 3
        assert product_repository.save.await_count == 2

    @pytest.mark.asyncio
    async def test_missing_product_is_skipped(
        self, adjuster, product_repository, make_product, make_item, make_order, seller
    ):
        shoe = make_product(seller.id, quantity=5)
        order = make_order(
            items=[
                make_item(uuid.uuid4(), seller.id, quantity=1),
                make_item(shoe.id, seller.id, quantity=1, position=1),
                make_item(None, seller.id, quantity=1, position=2),
            ]
        )
        product_repository.get_product.side_effect = (
            lambda product_id: shoe if product_id == shoe.id else None
        )

        adjustments = await adjuster.adjust_for_order(order)

        assert len(adjustments) == 1
        assert shoe.quantity == 4
        assert product_repository.get_product.await_count == 2

    @pytest.mark.asyncio
    async def test_save_failure_does_not_stop_other_items(
        self, adjuster, product_repository, make_product, make_item, make_order, seller
    ):
        shoe = make_product(seller.id, quantity=5)
        hat = make_product(seller.id, quantity=5)
        order = make_order(
            items=[
                make_item(shoe.id, seller.id, quantity=1),
                make_item(hat.id, seller.id, quantity=1, position=1),
            ]
        )
        products = {shoe.id: shoe, hat.id: hat}
        product_repository.get_product.side_effect = lambda product_id: products[product_id]
        product_repository.save.side_effect = [ProductRepositoryError("deadlock"), hat]

        adjustments = await adjuster.adjust_for_order(order)

        assert [a.product_id for a in adjustments] == [hat.id]
        assert product_repository.save.await_count == 2
