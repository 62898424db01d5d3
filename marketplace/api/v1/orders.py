"""
Order management API endpoints.

This module implements the FastAPI router for reading orders and driving
their fulfillment lifecycle: listing and detail views scoped to the
requesting user, status updates by sellers, drivers and admins, and
cancellation by the buyer or an admin.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from marketplace.api.deps import CurrentUser, FulfillmentUser, OrderServiceDep
from marketplace.core.logging import get_logger
from marketplace.database.models.order import OrderStatus
from marketplace.schemas.orders import (
    OrderCancelRequest,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdateRequest,
    OrderSummaryResponse,
)
from marketplace.services.orders.repository import (
    OrderNotFoundError,
    OrderRepositoryError,
)
from marketplace.services.orders.service import OrderAccessError
from marketplace.services.orders.state_machine import StateTransitionError

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


def _not_found(order_id: UUID) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"message": "Order not found", "code": "ORDER_NOT_FOUND", "order_id": str(order_id)},
    )


def _forbidden(e: OrderAccessError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"message": str(e), "code": "FORBIDDEN"},
    )


def _invalid_transition(e: StateTransitionError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={
            "message": str(e),
            "code": "INVALID_STATUS_TRANSITION",
            "current_status": e.current_state.value,
            "target_status": e.target_state.value,
            "allowed_transitions": e.context.get("allowed_transitions", []),
        },
    )


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List orders",
    description="Orders placed, sold, delivered or (for admins) all orders",
)
async def list_orders(
    current_user: CurrentUser,
    service: OrderServiceDep,
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> OrderListResponse:
    """
    List orders visible to the current user.

    Args:
        current_user: Authenticated user
        service: Order service
        order_status: Optional status filter
        skip: Number of records to skip
        limit: Maximum number of records to return

    Returns:
        Paginated order summaries
    """
    try:
        orders, total = await service.list_orders_for_user(
            current_user, status=order_status, skip=skip, limit=limit
        )
    except OrderRepositoryError as e:
        logger.error("Failed to retrieve orders", user_id=str(current_user.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to retrieve orders", "code": "ORDER_LIST_ERROR"},
        ) from e

    return OrderListResponse(
        items=[OrderSummaryResponse.model_validate(order) for order in orders],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order details",
    description="Order with line items and tracking history",
)
async def get_order(
    order_id: UUID,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    try:
        order = await service.get_order(order_id, current_user)
    except OrderNotFoundError as e:
        raise _not_found(order_id) from e
    except OrderAccessError as e:
        raise _forbidden(e) from e

    return OrderResponse.model_validate(order)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
    description="Move an order through its fulfillment lifecycle",
)
async def update_order_status(
    order_id: UUID,
    request: OrderStatusUpdateRequest,
    current_user: FulfillmentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    """
    Update the status of an order.

    Args:
        order_id: Order identifier
        request: Target status with optional reason and location
        current_user: Seller, driver or admin
        service: Order service

    Returns:
        Updated order

    Raises:
        HTTPException: 400 for an illegal transition, 403 when the user is
            not involved in the order, 404 when it does not exist
    """
    try:
        order = await service.transition_status(
            order_id,
            request.status,
            actor=current_user,
            reason=request.reason,
            location=request.location,
        )
    except OrderNotFoundError as e:
        raise _not_found(order_id) from e
    except OrderAccessError as e:
        raise _forbidden(e) from e
    except StateTransitionError as e:
        logger.warning(
            "Rejected order status transition",
            order_id=str(order_id),
            current_status=e.current_state.value,
            target_status=e.target_state.value,
        )
        raise _invalid_transition(e) from e
    except OrderRepositoryError as e:
        logger.error("Failed to update order status", order_id=str(order_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to update order", "code": "ORDER_UPDATE_ERROR"},
        ) from e

    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel order",
    description="Cancel an order that has not been delivered yet",
)
async def cancel_order(
    order_id: UUID,
    request: OrderCancelRequest,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    try:
        order = await service.cancel_order(order_id, request.reason, actor=current_user)
    except OrderNotFoundError as e:
        raise _not_found(order_id) from e
    except OrderAccessError as e:
        raise _forbidden(e) from e
    except StateTransitionError as e:
        raise _invalid_transition(e) from e
    except OrderRepositoryError as e:
        logger.error("Failed to cancel order", order_id=str(order_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to cancel order", "code": "ORDER_UPDATE_ERROR"},
        ) from e

    return OrderResponse.model_validate(order)
