"""
Reconciliation of gateway payment events with marketplace orders.

A checkout may produce several orders (one per seller) paid by a single
payment intent. The intent metadata carries the order ids, and every
payment event is matched back to those orders here:

* ``payment_intent.succeeded`` marks each order as paid, then moves the
  payment transaction to succeeded, decrements stock and notifies buyer and
  sellers.
* ``payment_intent.payment_failed`` and ``payment_intent.canceled`` cancel
  the orders that are still unpaid.
* ``charge.refunded`` marks the orders paid by the charge's intent as
  refunded and records a refund transaction.

Each order, and each follow-up stage for an order, is handled on its own:
an error is logged and the rest of the batch carries on.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from pydantic import BaseModel, Field

from marketplace.core.logging import get_logger, log_performance
from marketplace.database.models.order import Order, OrderStatus, PaymentStatus
from marketplace.database.models.transaction import TransactionStatus, TransactionType
from marketplace.services.inventory.adjuster import InventoryAdjuster
from marketplace.services.notifications.dispatcher import OrderNotificationDispatcher
from marketplace.services.orders.repository import (
    OrderRepository,
    OrderRepositoryError,
)
from marketplace.services.orders.state_machine import (
    TRACKING_DESCRIPTIONS,
    OrderStateMachine,
)
from marketplace.services.payments.events import ChargePayload, PaymentIntentPayload
from marketplace.services.payments.repository import (
    TransactionRepository,
    TransactionRepositoryError,
)
from marketplace.services.payments.stripe_client import from_minor_units

logger = get_logger(__name__)

ORDER_IDS_METADATA_KEY = "orderIds"
LEGACY_ORDER_ID_METADATA_KEY = "orderId"
# Stripe rejects metadata values longer than 500 characters
METADATA_VALUE_LIMIT = 500
PAYMENT_CANCELED_REASON = "Payment was canceled"


class ReconciliationResult(BaseModel):
    """Per-order outcome of reconciling one gateway event."""

    payment_intent_id: Optional[str] = None
    processed: list[uuid.UUID] = Field(default_factory=list)
    duplicates: list[uuid.UUID] = Field(default_factory=list)
    skipped: list[uuid.UUID] = Field(default_factory=list)
    missing: list[uuid.UUID] = Field(default_factory=list)
    failed: list[uuid.UUID] = Field(default_factory=list)
    invalid_ids: list[str] = Field(default_factory=list)


def split_metadata_values(key: str, values: Sequence[str]) -> dict[str, str]:
    """
    Spread comma separated values over ``key``, ``key_2``, ``key_3``...

    Every metadata value stays within the gateway's length limit; values are
    never split in the middle.

    Example:
        >>> split_metadata_values("orderIds", ["a", "b"])
        {'orderIds': 'a,b'}
    """
    chunks: list[str] = []
    current = ""
    for value in values:
        candidate = f"{current},{value}" if current else value
        if current and len(candidate) > METADATA_VALUE_LIMIT:
            chunks.append(current)
            current = value
        else:
            current = candidate
    if current:
        chunks.append(current)

    return {
        key if index == 0 else f"{key}_{index + 1}": chunk
        for index, chunk in enumerate(chunks)
    }


def join_metadata_values(metadata: dict[str, str], key: str) -> str:
    """Reassemble a value written by :func:`split_metadata_values`."""
    parts = [metadata.get(key) or ""]
    index = 2
    while f"{key}_{index}" in metadata:
        parts.append(metadata[f"{key}_{index}"] or "")
        index += 1
    return ",".join(part for part in parts if part.strip())


def resolve_order_ids(metadata: dict[str, str]) -> tuple[list[uuid.UUID], list[str]]:
    """
    Extract the order ids a payment intent pays for.

    ``orderIds`` (comma separated, possibly continued in ``orderIds_2``
    and onwards) takes precedence over the single
    ``orderId`` written by older checkouts. Blank entries are dropped and
    duplicates collapse onto their first occurrence.

    Args:
        metadata: Payment intent metadata

    Returns:
        Tuple of (valid order ids in metadata order, malformed entries)
    """
    raw = join_metadata_values(metadata, ORDER_IDS_METADATA_KEY)
    if not raw.strip():
        raw = metadata.get(LEGACY_ORDER_ID_METADATA_KEY) or ""

    order_ids: list[uuid.UUID] = []
    invalid: list[str] = []
    for part in raw.split(","):
        candidate = part.strip()
        if not candidate:
            continue
        try:
            order_id = uuid.UUID(candidate)
        except ValueError:
            invalid.append(candidate)
            continue
        if order_id not in order_ids:
            order_ids.append(order_id)

    return order_ids, invalid


class OrderReconciler:
    """
    Applies verified payment events to orders, transactions and stock.
    """

    def __init__(
        self,
        orders: OrderRepository,
        transactions: TransactionRepository,
        inventory: InventoryAdjuster,
        dispatcher: OrderNotificationDispatcher,
        state_machine: Optional[OrderStateMachine] = None,
    ):
        """
        Args:
            orders: Order repository
            transactions: Transaction repository
            inventory: Stock adjuster for paid orders
            dispatcher: Order notification fan-out
            state_machine: Order lifecycle rules
        """
        self.orders = orders
        self.transactions = transactions
        self.inventory = inventory
        self.dispatcher = dispatcher
        self.state_machine = state_machine or OrderStateMachine()

    def _order_ids_for(
        self, payment_intent: PaymentIntentPayload, result: ReconciliationResult
    ) -> list[uuid.UUID]:
        order_ids, invalid = resolve_order_ids(payment_intent.metadata)
        result.invalid_ids.extend(invalid)
        if invalid:
            logger.warning(
                "Malformed order ids in payment metadata",
                payment_intent_id=payment_intent.id,
                invalid_ids=invalid,
            )
        if not order_ids:
            logger.warning(
                "No order ids in payment metadata",
                payment_intent_id=payment_intent.id,
                metadata_keys=sorted(payment_intent.metadata),
            )
        return order_ids

    async def _load_order(
        self, order_id: uuid.UUID, result: ReconciliationResult
    ) -> Optional[Order]:
        try:
            order = await self.orders.get_order_by_id(order_id)
        except OrderRepositoryError as e:
            result.failed.append(order_id)
            logger.error(
                "Failed to load order for reconciliation",
                order_id=str(order_id),
                payment_intent_id=result.payment_intent_id,
                error=str(e),
            )
            return None

        if order is None:
            result.missing.append(order_id)
            logger.warning(
                "Order referenced by payment not found",
                order_id=str(order_id),
                payment_intent_id=result.payment_intent_id,
            )
        return order

    async def reconcile_payment_succeeded(
        self, payment_intent: PaymentIntentPayload
    ) -> ReconciliationResult:
        """
        Mark every order paid by a succeeded payment intent as processing.

        All orders are claimed first. Only then, for the orders claimed by
        this call, the transaction is marked succeeded, stock is decremented
        and notifications are sent. Orders already paid by the same intent
        are skipped, so a redelivered event has no further effect.

        Args:
            payment_intent: ``data.object`` of the event

        Returns:
            Per-order outcome
        """
        result = ReconciliationResult(payment_intent_id=payment_intent.id)
        order_ids = self._order_ids_for(payment_intent, result)
        if not order_ids:
            return result

        paid_at = datetime.now(timezone.utc)
        claimed: list[uuid.UUID] = []

        with log_performance(
            logger,
            "reconcile_payment_succeeded",
            payment_intent_id=payment_intent.id,
            order_count=len(order_ids),
        ):
            for order_id in order_ids:
                order = await self._load_order(order_id, result)
                if order is None:
                    continue

                if order.is_paid_by(payment_intent.id):
                    result.duplicates.append(order_id)
                    logger.info(
                        "Order already paid by this payment intent, skipping",
                        order_id=str(order_id),
                        payment_intent_id=payment_intent.id,
                    )
                    continue

                if order.status != OrderStatus.PENDING:
                    logger.warning(
                        "Payment succeeded for order that is not pending",
                        order_id=str(order_id),
                        status=order.status.value,
                        payment_status=order.payment_status.value,
                    )

                try:
                    won = await self.orders.claim_payment(
                        order,
                        payment_intent_id=payment_intent.id,
                        paid_at=paid_at,
                        description=TRACKING_DESCRIPTIONS[OrderStatus.PROCESSING],
                    )
                except OrderRepositoryError as e:
                    result.failed.append(order_id)
                    logger.error(
                        "Failed to mark order as paid",
                        order_id=str(order_id),
                        payment_intent_id=payment_intent.id,
                        error=str(e),
                    )
                    continue

                if not won:
                    result.duplicates.append(order_id)
                    logger.info(
                        "Concurrent delivery already claimed order, skipping",
                        order_id=str(order_id),
                        payment_intent_id=payment_intent.id,
                    )
                    continue

                claimed.append(order_id)
                result.processed.append(order_id)

            if claimed:
                await self._mark_transaction(
                    payment_intent.id,
                    TransactionStatus.SUCCEEDED,
                    processed_at=paid_at,
                    charge_id=payment_intent.latest_charge,
                )

            for order_id in claimed:
                await self._fulfil_paid_order(order_id)

        logger.info(
            "Payment reconciled",
            payment_intent_id=payment_intent.id,
            processed=len(result.processed),
            duplicates=len(result.duplicates),
            missing=len(result.missing),
            failed=len(result.failed),
        )
        return result

    async def _reload_order(self, order_id: uuid.UUID) -> Optional[Order]:
        # a failed write elsewhere in the batch rolls back the shared session
        # and expires every loaded order, so each stage starts from a fresh row
        try:
            order = await self.orders.get_order_by_id(order_id)
        except OrderRepositoryError as e:
            logger.error("Failed to reload order", order_id=str(order_id), error=str(e))
            return None
        if order is None:
            logger.warning("Order disappeared during reconciliation", order_id=str(order_id))
        return order

    async def _fulfil_paid_order(self, order_id: uuid.UUID) -> None:
        order = await self._reload_order(order_id)
        if order is None:
            return
        try:
            await self.inventory.adjust_for_order(order)
        except Exception as e:
            logger.error(
                "Inventory adjustment failed for paid order",
                order_id=str(order_id),
                error=str(e),
                error_type=type(e).__name__,
            )

        order = await self._reload_order(order_id)
        if order is None:
            return
        try:
            await self.dispatcher.notify_order_paid(order)
        except Exception as e:
            logger.error(
                "Notification dispatch failed for paid order",
                order_id=str(order_id),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _mark_transaction(
        self,
        payment_intent_id: str,
        status: TransactionStatus,
        **fields,
    ) -> None:
        try:
            await self.transactions.update_status(payment_intent_id, status, **fields)
        except TransactionRepositoryError as e:
            logger.error(
                "Failed to update payment transaction",
                payment_intent_id=payment_intent_id,
                status=status.value,
                error=str(e),
            )

    async def reconcile_payment_failed(
        self, payment_intent: PaymentIntentPayload
    ) -> ReconciliationResult:
        """
        Cancel the unpaid orders of a failed payment intent.

        Orders whose payment already completed are left untouched. The
        payment transaction records the gateway failure code and message,
        and each buyer is told the payment failed.
        """
        error = payment_intent.last_payment_error
        message = error.message if error and error.message else "Payment failed"
        failure_code = (error.decline_code or error.code) if error else None

        result = await self._cancel_unpaid_orders(
            payment_intent,
            reason=f"Payment failed: {message}",
            notify_reason=message,
        )

        await self._mark_transaction(
            payment_intent.id,
            TransactionStatus.FAILED,
            processed_at=datetime.now(timezone.utc),
            failure_code=failure_code,
            failure_message=message,
        )
        return result

    async def reconcile_payment_canceled(
        self, payment_intent: PaymentIntentPayload
    ) -> ReconciliationResult:
        """Cancel the unpaid orders of a canceled payment intent."""
        result = await self._cancel_unpaid_orders(
            payment_intent, reason=PAYMENT_CANCELED_REASON
        )
        await self._mark_transaction(
            payment_intent.id,
            TransactionStatus.CANCELLED,
            processed_at=datetime.now(timezone.utc),
            failure_message=payment_intent.cancellation_reason,
        )
        return result

    async def _cancel_unpaid_orders(
        self,
        payment_intent: PaymentIntentPayload,
        reason: str,
        notify_reason: Optional[str] = None,
    ) -> ReconciliationResult:
        result = ReconciliationResult(payment_intent_id=payment_intent.id)

        for order_id in self._order_ids_for(payment_intent, result):
            order = await self._load_order(order_id, result)
            if order is None:
                continue

            if order.payment_status == PaymentStatus.COMPLETED:
                result.skipped.append(order_id)
                logger.warning(
                    "Ignoring payment failure for paid order",
                    order_id=str(order_id),
                    payment_intent_id=payment_intent.id,
                )
                continue

            if self.state_machine.can_transition(order, OrderStatus.CANCELLED):
                self.state_machine.apply_transition(
                    order, OrderStatus.CANCELLED, reason=reason
                )
            else:
                logger.warning(
                    "Order cannot be cancelled, recording payment failure only",
                    order_id=str(order_id),
                    status=order.status.value,
                )
            order.payment_status = PaymentStatus.FAILED

            try:
                await self.orders.save(order)
            except OrderRepositoryError as e:
                result.failed.append(order_id)
                logger.error(
                    "Failed to record payment failure on order",
                    order_id=str(order_id),
                    payment_intent_id=payment_intent.id,
                    error=str(e),
                )
                continue

            result.processed.append(order_id)
            if notify_reason is not None:
                try:
                    await self.dispatcher.notify_payment_failed(order, notify_reason)
                except Exception as e:
                    logger.error(
                        "Payment failure notification failed",
                        order_id=str(order_id),
                        error=str(e),
                        error_type=type(e).__name__,
                    )

        logger.info(
            "Unpaid orders cancelled",
            payment_intent_id=payment_intent.id,
            reason=reason,
            processed=len(result.processed),
            skipped=len(result.skipped),
            missing=len(result.missing),
            failed=len(result.failed),
        )
        return result

    async def reconcile_charge_refunded(self, charge: ChargePayload) -> ReconciliationResult:
        """
        Record a refund of a charge against the orders it paid for.

        Every gateway refund gets its own refund transaction; a redelivered
        event finds the transaction by refund id and does nothing. The amount
        is the latest refund's amount, or, when the event does not carry the
        refund list, the part of ``amount_refunded`` not yet recorded.

        Orders move to the refunded status only where the lifecycle allows it
        (delivered orders); elsewhere just the payment status and the reason
        change. Orders refunded by an earlier refund keep their state.

        Args:
            charge: ``data.object`` of the event

        Returns:
            Per-order outcome
        """
        result = ReconciliationResult(payment_intent_id=charge.payment_intent)
        if not charge.payment_intent:
            logger.warning("Refunded charge has no payment intent", charge_id=charge.id)
            return result

        refund = charge.latest_refund or {}
        refund_id = refund.get("id")
        reason = charge.refund_reason or "Payment refunded"

        try:
            if refund_id and await self.transactions.get_refund_transaction(refund_id):
                logger.info(
                    "Refund already recorded, skipping",
                    refund_id=refund_id,
                    charge_id=charge.id,
                )
                return result
            orders = await self.orders.get_orders_by_transaction_id(charge.payment_intent)
            if refund.get("amount") is not None:
                amount = from_minor_units(refund["amount"], charge.currency)
            else:
                amount = from_minor_units(
                    charge.amount_refunded, charge.currency
                ) - await self.transactions.get_refunded_total(charge.payment_intent)
        except (OrderRepositoryError, TransactionRepositoryError) as e:
            logger.error(
                "Failed to load refund context",
                charge_id=charge.id,
                payment_intent_id=charge.payment_intent,
                error=str(e),
            )
            raise

        if not orders:
            logger.warning(
                "No orders paid by refunded charge",
                charge_id=charge.id,
                payment_intent_id=charge.payment_intent,
            )
            return result

        order_ids = [order.id for order in orders]
        if amount <= 0:
            result.duplicates.extend(order_ids)
            logger.info(
                "No unrecorded refund amount on charge, skipping",
                charge_id=charge.id,
                payment_intent_id=charge.payment_intent,
            )
            return result

        covered: list[tuple[uuid.UUID, Optional[uuid.UUID], Decimal]] = []
        for order_id in order_ids:
            order = await self._load_order(order_id, result)
            if order is None:
                continue
            snapshot = (order_id, order.customer_id, order.total)

            if order.payment_status == PaymentStatus.REFUNDED:
                result.duplicates.append(order_id)
                covered.append(snapshot)
                continue

            if self.state_machine.can_transition(order, OrderStatus.REFUNDED):
                self.state_machine.apply_transition(order, OrderStatus.REFUNDED, reason=reason)
            else:
                logger.warning(
                    "Refund received for order that is not delivered",
                    order_id=str(order_id),
                    status=order.status.value,
                )
                order.payment_status = PaymentStatus.REFUNDED
                order.refund_reason = reason

            try:
                await self.orders.save(order)
            except OrderRepositoryError as e:
                result.failed.append(order_id)
                logger.error(
                    "Failed to record refund on order",
                    order_id=str(order_id),
                    error=str(e),
                )
                continue

            covered.append(snapshot)
            result.processed.append(order_id)

        if not covered:
            return result

        full_refund = amount >= from_minor_units(charge.amount, charge.currency)
        await self._record_refund(
            charge,
            [order_id for order_id, _, _ in covered],
            customer_id=covered[0][1],
            amount=amount,
            refund_id=refund_id,
            reason=reason,
            full_refund=full_refund,
        )

        for order_id, _, total in covered:
            # a full refund over several orders is reported per order
            share = total if full_refund and len(covered) > 1 else amount
            order = await self._reload_order(order_id)
            if order is None:
                continue
            try:
                await self.dispatcher.notify_order_refunded(order, share)
            except Exception as e:
                logger.error(
                    "Refund notification failed",
                    order_id=str(order_id),
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.info(
            "Charge refund reconciled",
            charge_id=charge.id,
            refund_id=refund_id,
            payment_intent_id=charge.payment_intent,
            amount=float(amount),
            processed=len(result.processed),
            already_refunded=len(result.duplicates),
            failed=len(result.failed),
        )
        return result

    async def _record_refund(
        self,
        charge: ChargePayload,
        order_ids: list[uuid.UUID],
        customer_id: Optional[uuid.UUID],
        amount: Decimal,
        refund_id: Optional[str],
        reason: str,
        full_refund: bool,
    ) -> None:
        transaction_type = (
            TransactionType.REFUND if full_refund else TransactionType.PARTIAL_REFUND
        )
        try:
            await self.transactions.create_transaction(
                transaction_type=transaction_type,
                amount=amount,
                currency=charge.currency,
                payment_intent_id=charge.payment_intent,
                status=TransactionStatus.SUCCEEDED,
                order_id=order_ids[0],
                user_id=customer_id,
                description=reason,
                meta={"orderIds": ",".join(str(order_id) for order_id in order_ids)},
                charge_id=charge.id,
                refund_id=refund_id,
                processed_at=datetime.now(timezone.utc),
            )
        except TransactionRepositoryError as e:
            logger.error(
                "Failed to record refund transaction",
                charge_id=charge.id,
                refund_id=refund_id,
                error=str(e),
            )
