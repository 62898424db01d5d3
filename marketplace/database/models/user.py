"""
User model for marketplace accounts.

Only the fields the order and payment flow needs are mapped here; profile
management lives in the account service.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.base import BaseModel, enum_values


class UserRole(str, Enum):
    """Marketplace user roles."""

    BUYER = "buyer"
    SELLER = "seller"
    DRIVER = "driver"
    ADMIN = "admin"


class User(BaseModel):
    """
    Marketplace account.

    Attributes:
        email: Unique login email
        first_name: Given name
        last_name: Family name
        role: Account role controlling access to order actions
        is_active: Whether the account may authenticate
        stripe_customer_id: Customer id at the payment gateway, if created
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="User email address",
    )

    first_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="",
        comment="User first name",
    )

    last_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="",
        comment="User last name",
    )

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole, name="user_role", values_callable=enum_values),
        nullable=False,
        default=UserRole.BUYER,
        index=True,
        comment="User role",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether the account is active",
    )

    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Stripe customer identifier",
    )

    __table_args__ = {"comment": "Marketplace user accounts"}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
