"""
Payment service orchestrating the checkout payment with Stripe.

This module implements the PaymentService class that opens one Stripe
payment intent for all orders created by a checkout, records the pending
payment transaction and stamps the intent id onto each order. The intent
metadata lists the order ids, spread over continuation keys when they
do not fit one value, so the webhook can reconcile them later.
"""

from decimal import Decimal
from typing import Any, Optional, Sequence

from marketplace.core.config import get_settings
from marketplace.core.logging import get_logger
from marketplace.database.models.order import Order
from marketplace.database.models.transaction import TransactionStatus, TransactionType
from marketplace.database.models.user import User
from marketplace.services.orders.repository import OrderRepository, OrderRepositoryError
from marketplace.services.payments.reconciler import (
    ORDER_IDS_METADATA_KEY,
    split_metadata_values,
)
from marketplace.services.payments.repository import (
    TransactionRepository,
    TransactionRepositoryError,
)
from marketplace.services.payments.stripe_client import (
    StripeClient,
    StripeClientError,
    StripePaymentError,
    to_minor_units,
)

logger = get_logger(__name__)

# Stripe accepts at most 50 metadata keys per object
METADATA_KEY_LIMIT = 50


class PaymentServiceError(Exception):
    """Base exception for payment service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class PaymentProcessingError(PaymentServiceError):
    """Exception for payment processing failures."""


class PaymentValidationError(PaymentServiceError):
    """Exception for payment validation failures."""


class WebhookVerificationError(PaymentServiceError):
    """Raised when a webhook payload or signature cannot be verified."""


class WebhookConfigurationError(PaymentServiceError):
    """Raised when webhooks cannot be verified because no secret is configured."""


class PaymentService:
    """
    Creates checkout payments.

    Attributes:
        stripe_client: Stripe API client wrapper
        orders: Order repository
        transactions: Transaction repository
    """

    def __init__(
        self,
        stripe_client: StripeClient,
        orders: OrderRepository,
        transactions: TransactionRepository,
        currency: Optional[str] = None,
    ):
        self.stripe_client = stripe_client
        self.orders = orders
        self.transactions = transactions
        self.currency = (currency or get_settings().currency).lower()

    async def create_checkout_payment(
        self,
        orders: Sequence[Order],
        customer: User,
    ) -> dict[str, Any]:
        """
        Open one payment intent covering every order of a checkout.

        Args:
            orders: Pending orders created by the checkout
            customer: Paying user

        Returns:
            Dictionary with ``payment_intent_id``, ``client_secret``,
            ``amount`` and ``currency``

        Raises:
            PaymentValidationError: If there is nothing to pay
            PaymentProcessingError: If Stripe or the database fails
        """
        if not orders:
            raise PaymentValidationError(
                "No orders to pay for", customer_id=str(customer.id)
            )

        amount = sum((order.total for order in orders), Decimal("0.00"))
        if amount <= 0:
            raise PaymentValidationError(
                "Payment amount must be positive",
                customer_id=str(customer.id),
                amount=str(amount),
            )

        metadata = {
            **split_metadata_values(
                ORDER_IDS_METADATA_KEY, [str(order.id) for order in orders]
            ),
            **split_metadata_values(
                "orderNumbers", [order.order_number for order in orders]
            ),
            "userId": str(customer.id),
        }
        if len(metadata) > METADATA_KEY_LIMIT:
            raise PaymentValidationError(
                "Too many orders for one payment",
                customer_id=str(customer.id),
                order_count=len(orders),
            )

        try:
            payment_intent = self.stripe_client.create_payment_intent(
                amount=to_minor_units(amount, self.currency),
                currency=self.currency,
                metadata=metadata,
                customer_id=customer.stripe_customer_id,
                receipt_email=customer.email,
                idempotency_key=f"checkout-{orders[0].id}",
            )
        except StripePaymentError as e:
            logger.warning(
                "Checkout payment declined",
                customer_id=str(customer.id),
                error=str(e),
                code=e.code,
            )
            raise PaymentProcessingError(
                f"Payment declined: {e}", code=e.code, customer_id=str(customer.id)
            ) from e
        except StripeClientError as e:
            logger.error(
                "Failed to create checkout payment intent",
                customer_id=str(customer.id),
                error=str(e),
                code=e.code,
            )
            raise PaymentProcessingError(
                f"Failed to create payment: {e}",
                code=e.code,
                customer_id=str(customer.id),
            ) from e

        try:
            await self.transactions.create_transaction(
                transaction_type=TransactionType.PAYMENT,
                amount=amount,
                currency=self.currency,
                payment_intent_id=payment_intent.id,
                status=TransactionStatus.PENDING,
                order_id=orders[0].id,
                user_id=customer.id,
                description=f"Checkout payment for {len(orders)} order(s)",
                meta=metadata,
            )
            for order in orders:
                order.transaction_id = payment_intent.id
                await self.orders.save(order)
        except (TransactionRepositoryError, OrderRepositoryError) as e:
            logger.error(
                "Failed to record checkout payment",
                payment_intent_id=payment_intent.id,
                error=str(e),
            )
            self._cancel_unrecorded_intent(payment_intent.id)
            raise PaymentProcessingError(
                "Failed to record checkout payment",
                payment_intent_id=payment_intent.id,
            ) from e

        logger.info(
            "Checkout payment created",
            payment_intent_id=payment_intent.id,
            customer_id=str(customer.id),
            order_count=len(orders),
            amount=float(amount),
            currency=self.currency,
        )

        return {
            "payment_intent_id": payment_intent.id,
            "client_secret": payment_intent.client_secret,
            "amount": amount,
            "currency": self.currency,
        }

    def _cancel_unrecorded_intent(self, payment_intent_id: str) -> None:
        """Cancel an intent the database has no record of so it cannot be charged."""
        try:
            self.stripe_client.cancel_payment_intent(
                payment_intent_id, cancellation_reason="abandoned"
            )
        except StripeClientError as e:
            logger.error(
                "Failed to cancel unrecorded payment intent",
                payment_intent_id=payment_intent_id,
                error=str(e),
                code=e.code,
            )
