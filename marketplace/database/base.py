"""
SQLAlchemy declarative base and common model mixins.

This module provides the SQLAlchemy DeclarativeBase with async attribute
support, mixins for UUID primary keys and timestamps, and the ``BaseModel``
used by every marketplace table.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Type

from sqlalchemy import JSON, DateTime, func, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere
JSONDocument = JSON().with_variant(JSONB(), "postgresql")
EMPTY_JSON_DEFAULT = text("'{}'")


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all SQLAlchemy models with async support.

    Provides async attribute loading and serialization helpers shared by
    all database models.
    """

    __abstract__ = True

    def to_dict(self, exclude: Optional[set[str]] = None) -> Dict[str, Any]:
        """
        Convert model column values to a JSON-friendly dictionary.

        Args:
            exclude: Set of attribute names to exclude from output

        Returns:
            Dictionary representation of the model columns
        """
        exclude = exclude or set()
        result: Dict[str, Any] = {}

        for column in self.__table__.columns:
            if column.key in exclude:
                continue
            value = getattr(self, column.key)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, uuid.UUID):
                value = str(value)
            elif isinstance(value, Decimal):
                value = float(value)
            elif isinstance(value, Enum):
                value = value.value
            result[column.key] = value

        return result

    def __repr__(self) -> str:
        pk_values = []
        for column in self.__table__.primary_key.columns:
            value = getattr(self, column.key, None)
            if value is not None:
                pk_values.append(f"{column.key}={value!r}")

        pk_str = ", ".join(pk_values) if pk_values else "transient"
        return f"<{self.__class__.__name__}({pk_str})>"


class TimestampMixin:
    """
    Mixin for automatic timestamp management.

    Adds created_at and updated_at columns managed by the database.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            comment="Timestamp when record was created",
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
            comment="Timestamp when record was last updated",
        )


class UUIDMixin:
    """Mixin for a UUID primary key generated with uuid4."""

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            UUID(as_uuid=True),
            primary_key=True,
            default=uuid.uuid4,
            nullable=False,
            comment="Unique identifier for the record",
        )


class BaseModel(Base, UUIDMixin, TimestampMixin):
    """
    Base model with UUID primary key and timestamps.

    Example:
        class Product(BaseModel):
            __tablename__ = "products"

            title: Mapped[str] = mapped_column(String(255))
    """

    __abstract__ = True


def enum_values(enum_cls: Type[Enum]) -> list[str]:
    """
    Persist enum members by value rather than by name.

    Used as ``values_callable`` for ``sqlalchemy.Enum`` columns so the
    database stores ``in-transit`` instead of ``IN_TRANSIT``.
    """
    return [member.value for member in enum_cls]
