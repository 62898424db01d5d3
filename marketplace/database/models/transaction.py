"""
Transaction model for payment gateway audit records.

One row is written per gateway operation (payment, refund). Rows reference
orders and users by id only; deleting either never removes audit history.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.base import (
    EMPTY_JSON_DEFAULT,
    BaseModel,
    JSONDocument,
    enum_values,
)


class TransactionType(str, Enum):
    """Kind of gateway operation."""

    PAYMENT = "payment"
    REFUND = "refund"
    PARTIAL_REFUND = "partial_refund"


class TransactionStatus(str, Enum):
    """
    Gateway operation status.

    The ``requires_*`` values mirror payment intent statuses reported by the
    gateway while the buyer is still completing checkout.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REQUIRES_ACTION = "requires_action"
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"

    @property
    def is_final(self) -> bool:
        return self in (
            TransactionStatus.SUCCEEDED,
            TransactionStatus.FAILED,
            TransactionStatus.CANCELLED,
        )


class Transaction(BaseModel):
    """
    Audit record of one payment gateway operation.

    Attributes:
        type: Payment or refund
        status: Gateway status of the operation
        order_id: First order covered by the payment, if any
        user_id: Buyer who paid
        amount: Amount in major currency units
        currency: ISO currency code
        payment_intent_id: Gateway payment intent id
        charge_id: Gateway charge id
        refund_id: Gateway refund id
        card_brand: Card brand reported on charge success
        card_last4: Last four card digits
        failure_code: Gateway failure code
        failure_message: Gateway failure message
        description: Free-form description
        meta: Extra gateway data, including the covered order ids
        processed_at: When the gateway finished the operation
    """

    __tablename__ = "transactions"

    type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType, name="transaction_type", values_callable=enum_values),
        nullable=False,
        default=TransactionType.PAYMENT,
        comment="Transaction type",
    )

    status: Mapped[TransactionStatus] = mapped_column(
        SQLEnum(
            TransactionStatus, name="transaction_status", values_callable=enum_values
        ),
        nullable=False,
        default=TransactionStatus.PENDING,
        index=True,
        comment="Transaction status",
    )

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
        index=True,
        comment="Order covered by the transaction",
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Paying user",
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Amount in major currency units",
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="usd",
        comment="ISO currency code",
    )

    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Gateway payment intent id",
    )

    charge_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Gateway charge id",
    )

    refund_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Gateway refund id",
    )

    card_brand: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        comment="Card brand",
    )

    card_last4: Mapped[Optional[str]] = mapped_column(
        String(4),
        nullable=True,
        comment="Last four card digits",
    )

    failure_code: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Gateway failure code",
    )

    failure_message: Mapped[Optional[str]] = mapped_column(
        String(1000),
        nullable=True,
        comment="Gateway failure message",
    )

    description: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Transaction description",
    )

    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONDocument,
        nullable=False,
        default=dict,
        server_default=EMPTY_JSON_DEFAULT,
        comment="Additional gateway data",
    )

    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the gateway finished the operation",
    )

    __table_args__ = (
        Index("ix_transactions_intent_type", "payment_intent_id", "type"),
        {"comment": "Payment gateway operation audit log"},
    )

    def __repr__(self) -> str:
        status = self.status.value if self.status else None
        return (
            f"<Transaction(id={self.id}, type={self.type}, status={status}, "
            f"payment_intent_id={self.payment_intent_id})>"
        )
