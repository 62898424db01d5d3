"""
Transaction repository for payment gateway audit records.

This module implements the TransactionRepository class used by checkout to
record pending payments and by the webhook handlers to move a payment
transaction through the gateway statuses and to record refunds.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.logging import get_logger
from marketplace.database.models.transaction import (
    Transaction,
    TransactionStatus,
    TransactionType,
)

logger = get_logger(__name__)


class TransactionRepositoryError(Exception):
    """Base exception for transaction repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class TransactionNotFoundError(TransactionRepositoryError):
    """Raised when a transaction is not found."""


class TransactionRepository:
    """
    Repository for transaction data access.

    Attributes:
        session: Async database session for executing queries
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_transaction(
        self,
        transaction_type: TransactionType,
        amount: Decimal,
        currency: str,
        payment_intent_id: Optional[str],
        status: TransactionStatus = TransactionStatus.PENDING,
        order_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        description: Optional[str] = None,
        meta: Optional[dict[str, Any]] = None,
        **fields: Any,
    ) -> Transaction:
        """
        Create a transaction record.

        Args:
            transaction_type: Payment or refund
            amount: Amount in major currency units
            currency: ISO currency code
            payment_intent_id: Gateway payment intent id
            status: Initial status
            order_id: Order covered by the transaction
            user_id: Paying user
            description: Free-form description
            meta: Extra gateway data
            **fields: Other Transaction columns, e.g. ``charge_id``

        Returns:
            Created transaction

        Raises:
            TransactionRepositoryError: If the insert fails
        """
        transaction = Transaction(
            type=transaction_type,
            status=status,
            amount=amount,
            currency=currency.lower(),
            payment_intent_id=payment_intent_id,
            order_id=order_id,
            user_id=user_id,
            description=description,
            meta=meta or {},
            **fields,
        )

        try:
            self.session.add(transaction)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Transaction creation failed",
                payment_intent_id=payment_intent_id,
                transaction_type=transaction_type.value,
                error=str(e),
            )
            raise TransactionRepositoryError(
                "Failed to create transaction",
                payment_intent_id=payment_intent_id,
                error=str(e),
            ) from e

        logger.info(
            "Transaction recorded",
            transaction_id=str(transaction.id),
            payment_intent_id=payment_intent_id,
            transaction_type=transaction_type.value,
            status=status.value,
            amount=float(amount),
        )
        return transaction

    async def get_payment_transaction(self, payment_intent_id: str) -> Optional[Transaction]:
        """
        Get the payment transaction recorded for a payment intent.

        Raises:
            TransactionRepositoryError: If query fails
        """
        try:
            result = await self.session.execute(
                select(Transaction)
                .where(
                    Transaction.payment_intent_id == payment_intent_id,
                    Transaction.type == TransactionType.PAYMENT,
                )
                .order_by(Transaction.created_at)
                .limit(1)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch transaction",
                payment_intent_id=payment_intent_id,
                error=str(e),
            )
            raise TransactionRepositoryError(
                "Failed to fetch transaction",
                payment_intent_id=payment_intent_id,
                error=str(e),
            ) from e

    async def get_refund_transaction(self, refund_id: str) -> Optional[Transaction]:
        try:
            result = await self.session.execute(
                select(Transaction).where(Transaction.refund_id == refund_id).limit(1)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch refund transaction", refund_id=refund_id, error=str(e))
            raise TransactionRepositoryError(
                "Failed to fetch refund transaction", refund_id=refund_id, error=str(e)
            ) from e

    async def get_refunded_total(self, payment_intent_id: str) -> Decimal:
        """
        Sum the refunds already recorded against a payment intent.

        Raises:
            TransactionRepositoryError: If query fails
        """
        try:
            result = await self.session.execute(
                select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                    Transaction.payment_intent_id == payment_intent_id,
                    Transaction.type.in_(
                        [TransactionType.REFUND, TransactionType.PARTIAL_REFUND]
                    ),
                )
            )
            return Decimal(str(result.scalar_one()))
        except SQLAlchemyError as e:
            logger.error(
                "Failed to sum refunds",
                payment_intent_id=payment_intent_id,
                error=str(e),
            )
            raise TransactionRepositoryError(
                "Failed to sum refunds",
                payment_intent_id=payment_intent_id,
                error=str(e),
            ) from e

    async def update_status(
        self,
        payment_intent_id: str,
        status: TransactionStatus,
        processed_at: Optional[datetime] = None,
        **fields: Any,
    ) -> Transaction:
        """
        Move the payment transaction of a payment intent to a new status.

        Args:
            payment_intent_id: Gateway payment intent id
            status: New status
            processed_at: When the gateway finished the operation
            **fields: Other columns to set, e.g. ``charge_id`` or ``failure_code``.
                ``None`` values are ignored.

        Returns:
            Updated transaction

        Raises:
            TransactionNotFoundError: If no payment transaction exists
            TransactionRepositoryError: If the update fails
        """
        transaction = await self.get_payment_transaction(payment_intent_id)
        if transaction is None:
            logger.warning(
                "No transaction recorded for payment intent",
                payment_intent_id=payment_intent_id,
                status=status.value,
            )
            raise TransactionNotFoundError(
                "Transaction not found",
                payment_intent_id=payment_intent_id,
            )

        previous_status = transaction.status
        transaction.status = status
        if processed_at is not None:
            transaction.processed_at = processed_at
        for key, value in fields.items():
            if value is not None:
                setattr(transaction, key, value)

        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to update transaction status",
                payment_intent_id=payment_intent_id,
                status=status.value,
                error=str(e),
            )
            raise TransactionRepositoryError(
                "Failed to update transaction status",
                payment_intent_id=payment_intent_id,
                error=str(e),
            ) from e

        logger.info(
            "Transaction status updated",
            payment_intent_id=payment_intent_id,
            previous_status=previous_status.value if previous_status else None,
            status=status.value,
        )
        return transaction
