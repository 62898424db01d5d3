"""
Inventory adjustment for paid orders.

For every line item of a reconciled order the adjuster decrements stock on
the matching color variant, or on the product itself when the product has
no variants, the item has no color, or the color matches no variant. Stock
never goes below zero: an oversell is clamped and logged with the amount
that could not be covered. The product's ``sold`` counter always grows by
the ordered quantity.
"""

import uuid
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from marketplace.core.logging import get_logger
from marketplace.database.models.order import Order, OrderItem
from marketplace.database.models.product import Product
from marketplace.services.inventory.repository import (
    ProductRepository,
    ProductRepositoryError,
)

logger = get_logger(__name__)


class StockAdjustment(BaseModel):
    """Outcome of adjusting stock for one line item."""

    model_config = ConfigDict(frozen=True)

    product_id: uuid.UUID
    color: Optional[str]
    requested: int
    previous_quantity: int
    new_quantity: int
    out_of_stock: bool
    used_variant: bool

    @property
    def oversold(self) -> int:
        return max(0, self.requested - self.previous_quantity)


class StockRequest(BaseModel):
    """Line item values captured before any stock is written."""

    model_config = ConfigDict(frozen=True)

    product_id: Optional[uuid.UUID]
    color: Optional[str]
    quantity: int
    title: str

    @classmethod
    def from_item(cls, item: OrderItem) -> "StockRequest":
        return cls(
            product_id=item.product_id,
            color=item.color,
            quantity=item.quantity,
            title=item.title,
        )


def decrement_stock(current: int, requested: int) -> tuple[int, int]:
    """
    Subtract ``requested`` from ``current`` without going below zero.

    Returns:
        Tuple of (new quantity, oversold units)
    """
    remaining = current - requested
    if remaining < 0:
        return 0, -remaining
    return remaining, 0


class InventoryAdjuster:
    """Decrements product and variant stock for reconciled orders."""

    def __init__(self, products: ProductRepository):
        self.products = products

    def apply_to_product(
        self, product: Product, item: Union[OrderItem, StockRequest]
    ) -> StockAdjustment:
        """
        Apply one line item to a loaded product in memory.

        Args:
            product: Product with variants loaded
            item: Paid line item

        Returns:
            The resulting stock adjustment
        """
        requested = item.quantity
        variant = None
        if product.has_variants and item.color:
            variant = product.find_variant(item.color)
            if variant is None:
                logger.warning(
                    "No variant matches line item color, adjusting product stock",
                    product_id=str(product.id),
                    color=item.color,
                    available_colors=[v.color for v in product.variants],
                )

        target = variant if variant is not None else product
        previous = target.quantity or 0
        new_quantity, oversold = decrement_stock(previous, requested)
        target.quantity = new_quantity
        target.out_of_stock = new_quantity == 0
        product.sold = (product.sold or 0) + requested

        if oversold:
            logger.warning(
                "Oversold stock clamped at zero",
                product_id=str(product.id),
                color=variant.color if variant is not None else None,
                requested=requested,
                available=previous,
                oversold=oversold,
            )

        return StockAdjustment(
            product_id=product.id,
            color=variant.color if variant is not None else None,
            requested=requested,
            previous_quantity=previous,
            new_quantity=new_quantity,
            out_of_stock=new_quantity == 0,
            used_variant=variant is not None,
        )

    async def adjust_for_order(self, order: Order) -> list[StockAdjustment]:
        """
        Decrement stock for every line item of a paid order, in list order.

        Items without a product reference, missing products and failing
        saves are logged and skipped; the remaining items are still adjusted.
        Line items are read once up front, since a failed save rolls back the
        session and expires the order.

        Args:
            order: Reconciled order

        Returns:
            Adjustments that were persisted
        """
        order_id = order.id
        requests = [StockRequest.from_item(item) for item in order.items]
        adjustments: list[StockAdjustment] = []

        for item in requests:
            if item.product_id is None:
                logger.warning(
                    "Line item has no product reference",
                    order_id=str(order_id),
                    title=item.title,
                )
                continue

            try:
                product = await self.products.get_product(item.product_id)
                if product is None:
                    logger.warning(
                        "Product not found for line item",
                        order_id=str(order_id),
                        product_id=str(item.product_id),
                    )
                    continue

                adjustment = self.apply_to_product(product, item)
                await self.products.save(product)
            except ProductRepositoryError as e:
                logger.error(
                    "Inventory adjustment failed for line item",
                    order_id=str(order_id),
                    product_id=str(item.product_id),
                    error=str(e),
                )
                continue

            adjustments.append(adjustment)
            logger.info(
                "Inventory adjusted",
                order_id=str(order_id),
                product_id=str(adjustment.product_id),
                color=adjustment.color,
                quantity=adjustment.requested,
                new_quantity=adjustment.new_quantity,
                out_of_stock=adjustment.out_of_stock,
            )

        return adjustments
