"""
Product catalog models.

A product either tracks stock on itself or, when it has color variants, on
each ``ProductVariant`` row. The ``sold`` counter is always kept on the
product.
"""

import uuid
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import BaseModel, enum_values

CENTS = Decimal("0.01")


class ProductStatus(str, Enum):
    """Catalog moderation status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    INACTIVE = "inactive"


class DiscountType(str, Enum):
    """How ``Product.discount_value`` is applied to the price."""

    NONE = "none"
    FLAT = "flat"
    PERCENTAGE = "percentage"


def apply_discount(
    price: Decimal, discount_type: DiscountType, discount_value: Decimal
) -> Decimal:
    """
    Apply a product discount to a unit price.

    Args:
        price: Undiscounted unit price
        discount_type: Flat amount, percentage or none
        discount_value: Discount amount or percentage points

    Returns:
        Discounted price rounded to cents, never below zero
    """
    if discount_type == DiscountType.FLAT:
        discounted = price - discount_value
    elif discount_type == DiscountType.PERCENTAGE:
        discounted = price * (Decimal("100") - discount_value) / Decimal("100")
    else:
        discounted = price
    return max(Decimal("0"), discounted).quantize(CENTS, rounding=ROUND_HALF_UP)


class Product(BaseModel):
    """
    Catalog entry sold by a single seller.

    Attributes:
        seller_id: Seller that owns the listing
        title: Display title, copied onto order line items at checkout
        price: Base unit price
        quantity: Top-level stock, used when the product has no variants
        sold: Aggregate units sold across all variants
        out_of_stock: True exactly when top-level quantity is zero
        discount_type: Discount applied at checkout
        discount_value: Flat amount or percentage points
        status: Moderation status, only approved products can be ordered
        variants: Color variants with their own price and stock
    """

    __tablename__ = "products"

    seller_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Seller that owns the product",
    )

    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product title",
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Product description",
    )

    image_url: Mapped[Optional[str]] = mapped_column(
        String(1024),
        nullable=True,
        comment="Primary product image",
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Base unit price",
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Top-level stock quantity",
    )

    sold: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Total units sold",
    )

    out_of_stock: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether top-level stock is exhausted",
    )

    discount_type: Mapped[DiscountType] = mapped_column(
        SQLEnum(DiscountType, name="discount_type", values_callable=enum_values),
        nullable=False,
        default=DiscountType.NONE,
        comment="Discount type",
    )

    discount_value: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Discount amount or percentage",
    )

    status: Mapped[ProductStatus] = mapped_column(
        SQLEnum(ProductStatus, name="product_status", values_callable=enum_values),
        nullable=False,
        default=ProductStatus.PENDING,
        index=True,
        comment="Moderation status",
    )

    variants: Mapped[list["ProductVariant"]] = relationship(
        "ProductVariant",
        back_populates="product",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="ProductVariant.color",
    )

    __table_args__ = (
        Index("ix_products_seller_status", "seller_id", "status"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        CheckConstraint("sold >= 0", name="ck_products_sold_non_negative"),
        {"comment": "Marketplace product catalog"},
    )

    def __repr__(self) -> str:
        return (
            f"<Product(id={self.id}, title={self.title!r}, "
            f"quantity={self.quantity}, variants={len(self.variants or [])})>"
        )

    @property
    def has_variants(self) -> bool:
        return bool(self.variants)

    @property
    def is_purchasable(self) -> bool:
        return self.status == ProductStatus.APPROVED

    def find_variant(self, color: Optional[str]) -> Optional["ProductVariant"]:
        """
        Find the variant matching a color selector.

        Matching ignores case and surrounding whitespace.

        Args:
            color: Color selector from a cart or order line item

        Returns:
            Matching variant, or None when there is no selector or no match
        """
        if not color:
            return None
        wanted = color.strip().casefold()
        for variant in self.variants or []:
            if variant.color.strip().casefold() == wanted:
                return variant
        return None

    def unit_price(self, color: Optional[str] = None) -> Decimal:
        """
        Price a buyer pays for one unit, with discount applied.

        The variant price is used when the color matches a variant.
        """
        variant = self.find_variant(color)
        base_price = variant.price if variant is not None else self.price
        return apply_discount(
            Decimal(base_price),
            self.discount_type or DiscountType.NONE,
            Decimal(self.discount_value or 0),
        )

    def available_quantity(self, color: Optional[str] = None) -> int:
        variant = self.find_variant(color)
        if variant is not None:
            return variant.quantity
        return self.quantity


class ProductVariant(BaseModel):
    """
    Color-keyed sub-SKU of a product with its own price and stock.

    Attributes:
        product_id: Owning product
        color: Variant selector, unique per product
        price: Variant unit price before discount
        quantity: Variant stock
        out_of_stock: True exactly when quantity is zero
    """

    __tablename__ = "product_variants"

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning product",
    )

    color: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Variant color selector",
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Variant unit price",
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Variant stock quantity",
    )

    out_of_stock: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether variant stock is exhausted",
    )

    product: Mapped["Product"] = relationship(
        "Product",
        back_populates="variants",
    )

    __table_args__ = (
        UniqueConstraint("product_id", "color", name="uq_product_variants_color"),
        CheckConstraint("quantity >= 0", name="ck_product_variants_quantity_non_negative"),
        CheckConstraint("price >= 0", name="ck_product_variants_price_non_negative"),
        {"comment": "Color variants of a product"},
    )

    def __repr__(self) -> str:
        return (
            f"<ProductVariant(product_id={self.product_id}, color={self.color!r}, "
            f"quantity={self.quantity})>"
        )
