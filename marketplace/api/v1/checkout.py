"""
Checkout API endpoint.

Turns the buyer's cart into one pending order per seller and, for card
payments, opens a single Stripe payment intent covering all of them. The
client secret is returned so the storefront can confirm the payment; the
orders are marked paid later by the payment webhook.
"""

from decimal import Decimal

from fastapi import APIRouter, HTTPException, status

from marketplace.api.deps import BuyerUser, OrderServiceDep, PaymentServiceDep
from marketplace.core.config import get_settings
from marketplace.core.logging import get_logger
from marketplace.database.models.order import PaymentMethod
from marketplace.schemas.orders import (
    CheckoutRequest,
    CheckoutResponse,
    OrderSummaryResponse,
)
from marketplace.services.orders.repository import OrderRepositoryError
from marketplace.services.orders.service import (
    InsufficientStockError,
    OrderValidationError,
)
from marketplace.services.payments.service import (
    PaymentProcessingError,
    PaymentValidationError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Check out the cart",
    description="Create one order per seller and a payment intent for the total",
)
async def checkout(
    request: CheckoutRequest,
    current_user: BuyerUser,
    orders_service: OrderServiceDep,
    payment_service: PaymentServiceDep,
) -> CheckoutResponse:
    """
    Create orders and start the payment.

    Args:
        request: Cart items, shipping address and payment method
        current_user: Buyer
        orders_service: Order service
        payment_service: Payment service

    Returns:
        Created orders and, for card payments, the payment intent

    Raises:
        HTTPException: 400 for invalid carts or missing stock, 500 when the
            orders or the payment cannot be created
    """
    try:
        orders = await orders_service.create_orders(
            customer=current_user,
            items=request.items,
            shipping_address=request.shipping_address.model_dump(),
            payment_method=request.payment_method,
            notes=request.notes,
        )
    except InsufficientStockError as e:
        logger.warning(
            "Checkout rejected: insufficient stock",
            user_id=str(current_user.id),
            **e.context,
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "code": "INSUFFICIENT_STOCK"},
        ) from e
    except OrderValidationError as e:
        logger.warning("Checkout validation failed", user_id=str(current_user.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "code": e.context.get("code", "VALIDATION_ERROR")},
        ) from e
    except OrderRepositoryError as e:
        logger.error("Checkout failed to store orders", user_id=str(current_user.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to create orders", "code": "ORDER_CREATION_ERROR"},
        ) from e

    summaries = [OrderSummaryResponse.model_validate(order) for order in orders]
    total = sum((order.total for order in orders), Decimal("0.00"))
    currency = get_settings().currency

    if request.payment_method != PaymentMethod.CARD:
        return CheckoutResponse(orders=summaries, amount=total, currency=currency)

    try:
        payment = await payment_service.create_checkout_payment(orders, current_user)
    except PaymentValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "code": "PAYMENT_VALIDATION_ERROR"},
        ) from e
    except PaymentProcessingError as e:
        logger.error(
            "Checkout payment could not be started",
            user_id=str(current_user.id),
            order_numbers=[order.order_number for order in orders],
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to start payment", "code": "PAYMENT_PROCESSING_ERROR"},
        ) from e

    return CheckoutResponse(
        orders=summaries,
        payment_intent_id=payment["payment_intent_id"],
        client_secret=payment["client_secret"],
        amount=payment["amount"],
        currency=payment["currency"],
    )
