"""
Product data access repository.

Loads catalog products with their variants and persists stock changes made
by the inventory adjuster.
"""

import uuid
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.logging import get_logger
from marketplace.database.models.product import Product

logger = get_logger(__name__)


class ProductRepositoryError(Exception):
    """Base exception for product repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class ProductNotFoundError(ProductRepositoryError):
    """Raised when a product is not found."""


class ProductRepository:
    """Repository for product and variant stock access."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_product(self, product_id: uuid.UUID) -> Optional[Product]:
        """
        Get product by ID with its variants.

        Args:
            product_id: Product identifier

        Returns:
            Product if found, None otherwise

        Raises:
            ProductRepositoryError: If query fails
        """
        try:
            result = await self.session.execute(
                select(Product)
                .where(Product.id == product_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch product", product_id=str(product_id), error=str(e))
            raise ProductRepositoryError(
                "Failed to fetch product", product_id=str(product_id), error=str(e)
            ) from e

    async def get_products(self, product_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, Product]:
        """
        Load several products at once.

        Args:
            product_ids: Product identifiers

        Returns:
            Mapping of product id to product for the ids that exist

        Raises:
            ProductRepositoryError: If query fails
        """
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}
        try:
            result = await self.session.execute(select(Product).where(Product.id.in_(ids)))
            return {product.id: product for product in result.scalars().all()}
        except SQLAlchemyError as e:
            logger.error("Failed to fetch products", product_count=len(ids), error=str(e))
            raise ProductRepositoryError(
                "Failed to fetch products", product_count=len(ids), error=str(e)
            ) from e

    async def save(self, product: Product) -> Product:
        """
        Commit stock changes for a product and its variants.

        Raises:
            ProductRepositoryError: If the commit fails
        """
        product_id = product.id
        try:
            self.session.add(product)
            await self.session.commit()
            return product
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to save product", product_id=str(product_id), error=str(e))
            raise ProductRepositoryError(
                "Failed to save product", product_id=str(product_id), error=str(e)
            ) from e
