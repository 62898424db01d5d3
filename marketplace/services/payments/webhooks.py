"""
Stripe webhook processing.

The processor verifies the signature of a raw webhook body, parses it into
a ``WebhookEvent`` and dispatches on its kind. Verification problems are
raised as ``WebhookVerificationError`` (or ``WebhookConfigurationError``
when no signing secret is set) so the endpoint can reject the request
before anything is processed. Once dispatched, per-order failures are
logged by the handlers and the event is still acknowledged.
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from marketplace.core.logging import get_logger
from marketplace.database.models.transaction import TransactionStatus
from marketplace.services.payments.events import (
    ChargePayload,
    CustomerPayload,
    PaymentIntentPayload,
    PaymentMethodPayload,
    WebhookEvent,
    WebhookEventKind,
)
from marketplace.services.payments.reconciler import OrderReconciler
from marketplace.services.payments.repository import (
    TransactionRepository,
    TransactionRepositoryError,
)
from marketplace.services.payments.service import (
    PaymentProcessingError,
    WebhookConfigurationError,
    WebhookVerificationError,
)
from marketplace.services.payments.stripe_client import (
    StripeClient,
    StripeClientError,
    WebhookSecretMissingError,
)

logger = get_logger(__name__)

EventHandler = Callable[[Any], Awaitable[Optional[dict[str, Any]]]]


class WebhookProcessor:
    """
    Verifies Stripe webhook events and routes them to their handlers.
    """

    def __init__(
        self,
        stripe_client: StripeClient,
        reconciler: OrderReconciler,
        transactions: TransactionRepository,
    ):
        self.stripe_client = stripe_client
        self.reconciler = reconciler
        self.transactions = transactions
        self._handlers: dict[WebhookEventKind, EventHandler] = {
            WebhookEventKind.PAYMENT_SUCCEEDED: self._handle_payment_succeeded,
            WebhookEventKind.PAYMENT_FAILED: self._handle_payment_failed,
            WebhookEventKind.PAYMENT_CANCELED: self._handle_payment_canceled,
            WebhookEventKind.CHARGE_SUCCEEDED: self._handle_charge_succeeded,
            WebhookEventKind.CHARGE_FAILED: self._handle_charge_failed,
            WebhookEventKind.CHARGE_REFUNDED: self._handle_charge_refunded,
            WebhookEventKind.PAYMENT_METHOD_ATTACHED: self._handle_payment_method_attached,
            WebhookEventKind.CUSTOMER_CREATED: self._handle_customer_created,
        }

    def verify(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """
        Verify the signature of a webhook body and parse it.

        Args:
            payload: Raw request body
            signature: ``Stripe-Signature`` header value

        Returns:
            Parsed event

        Raises:
            WebhookConfigurationError: If no webhook secret is configured
            WebhookVerificationError: If the signature or the payload is invalid
        """
        if not signature:
            logger.warning("Webhook received without signature header")
            raise WebhookVerificationError(
                "Missing Stripe-Signature header", code="MISSING_SIGNATURE"
            )

        try:
            self.stripe_client.construct_webhook_event(payload, signature)
        except WebhookSecretMissingError as e:
            raise WebhookConfigurationError(str(e), code=e.code) from e
        except StripeClientError as e:
            raise WebhookVerificationError(str(e), code=e.code) from e

        try:
            return WebhookEvent.model_validate_json(payload)
        except ValidationError as e:
            logger.warning("Webhook event has unexpected shape", error=str(e))
            raise WebhookVerificationError(
                "Invalid webhook payload", code="INVALID_PAYLOAD"
            ) from e

    async def handle_webhook(
        self, payload: bytes, signature: Optional[str]
    ) -> dict[str, Any]:
        """
        Verify and process one webhook delivery.

        Args:
            payload: Raw request body
            signature: ``Stripe-Signature`` header value

        Returns:
            Dictionary with ``event_id``, ``event_type``, ``handled`` and the
            handler ``result``

        Raises:
            WebhookConfigurationError: If no webhook secret is configured
            WebhookVerificationError: If the signature or the payload is invalid
            PaymentProcessingError: If a handler fails outright
        """
        event = self.verify(payload, signature)
        kind = event.kind
        handler = self._handlers.get(kind) if kind is not None else None

        if handler is None:
            logger.info(
                "Ignoring unhandled webhook event type",
                event_id=event.id,
                event_type=event.type,
            )
            return {"event_id": event.id, "event_type": event.type, "handled": False}

        try:
            data = event.payload()
        except ValidationError as e:
            logger.error(
                "Webhook event object could not be parsed",
                event_id=event.id,
                event_type=event.type,
                error=str(e),
            )
            raise WebhookVerificationError(
                "Invalid webhook event object", code="INVALID_PAYLOAD", event_id=event.id
            ) from e

        try:
            result = await handler(data)
        except Exception as e:
            logger.error(
                "Webhook handler failed",
                event_id=event.id,
                event_type=event.type,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentProcessingError(
                f"Webhook processing failed: {e}",
                event_id=event.id,
                event_type=event.type,
            ) from e

        logger.info("Webhook event processed", event_id=event.id, event_type=event.type)
        return {
            "event_id": event.id,
            "event_type": event.type,
            "handled": True,
            "result": result,
        }

    # Payment intent events

    async def _handle_payment_succeeded(self, data: PaymentIntentPayload) -> dict[str, Any]:
        result = await self.reconciler.reconcile_payment_succeeded(data)
        return result.model_dump(mode="json")

    async def _handle_payment_failed(self, data: PaymentIntentPayload) -> dict[str, Any]:
        result = await self.reconciler.reconcile_payment_failed(data)
        return result.model_dump(mode="json")

    async def _handle_payment_canceled(self, data: PaymentIntentPayload) -> dict[str, Any]:
        result = await self.reconciler.reconcile_payment_canceled(data)
        return result.model_dump(mode="json")

    # Charge events

    async def _handle_charge_succeeded(self, data: ChargePayload) -> None:
        if not data.payment_intent:
            logger.info("Charge without payment intent ignored", charge_id=data.id)
            return None
        await self._update_transaction(
            data.payment_intent,
            TransactionStatus.SUCCEEDED,
            processed_at=datetime.now(timezone.utc),
            charge_id=data.id,
            card_brand=data.card_brand,
            card_last4=data.card_last4,
        )
        return None

    async def _handle_charge_failed(self, data: ChargePayload) -> None:
        if not data.payment_intent:
            logger.info("Charge without payment intent ignored", charge_id=data.id)
            return None
        await self._update_transaction(
            data.payment_intent,
            TransactionStatus.FAILED,
            processed_at=datetime.now(timezone.utc),
            charge_id=data.id,
            failure_code=data.failure_code,
            failure_message=data.failure_message,
        )
        return None

    async def _handle_charge_refunded(self, data: ChargePayload) -> dict[str, Any]:
        result = await self.reconciler.reconcile_charge_refunded(data)
        return result.model_dump(mode="json")

    async def _update_transaction(
        self, payment_intent_id: str, status: TransactionStatus, **fields: Any
    ) -> None:
        try:
            await self.transactions.update_status(payment_intent_id, status, **fields)
        except TransactionRepositoryError as e:
            logger.error(
                "Failed to update transaction from charge event",
                payment_intent_id=payment_intent_id,
                status=status.value,
                error=str(e),
            )

    # Informational events

    async def _handle_payment_method_attached(self, data: PaymentMethodPayload) -> None:
        logger.info(
            "Payment method attached",
            payment_method_id=data.id,
            payment_method_type=data.type,
            customer_id=data.customer,
        )
        return None

    async def _handle_customer_created(self, data: CustomerPayload) -> None:
        logger.info("Stripe customer created", customer_id=data.id)
        return None
