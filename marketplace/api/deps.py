"""
FastAPI dependencies for authentication, authorization and service wiring.

This module provides dependency functions for JWT authentication, role-based
access control, database session management and the construction of the
per-request services. The Stripe client is created once by the application
lifespan and read from ``app.state``.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.logging import get_logger, set_user_id
from marketplace.core.security import TokenError, decode_access_token
from marketplace.database.connection import get_db
from marketplace.database.models.user import User, UserRole
from marketplace.services.inventory.adjuster import InventoryAdjuster
from marketplace.services.inventory.repository import ProductRepository
from marketplace.services.notifications.dispatcher import OrderNotificationDispatcher
from marketplace.services.notifications.service import NotificationService
from marketplace.services.orders.repository import OrderRepository
from marketplace.services.orders.service import OrderService
from marketplace.services.payments.reconciler import OrderReconciler
from marketplace.services.payments.repository import TransactionRepository
from marketplace.services.payments.service import PaymentService
from marketplace.services.payments.stripe_client import StripeClient
from marketplace.services.payments.webhooks import WebhookProcessor

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

DatabaseSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: DatabaseSession,
) -> User:
    """
    Validate JWT token and retrieve current authenticated user.

    Args:
        credentials: HTTP Bearer token from Authorization header
        db: Database session

    Returns:
        User: Authenticated user object

    Raises:
        HTTPException: 401 if token is invalid, expired, or user not found;
            403 if the account is inactive
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        payload = decode_access_token(credentials.credentials)
    except TokenError as e:
        logger.warning("Authentication failed", error=str(e), code=e.code)
        raise credentials_exception

    user_id = payload["sub"]
    try:
        user = await db.get(User, user_id)
    except SQLAlchemyError as e:
        logger.error("Database error during user retrieval", user_id=str(user_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )

    if user is None:
        logger.warning("Authentication failed: User not found", user_id=str(user_id))
        raise credentials_exception

    if not user.is_active:
        logger.warning("Authentication failed: User account is inactive", user_id=str(user.id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account",
        )

    set_user_id(str(user.id))
    return user


def require_role(*allowed_roles: UserRole):
    """
    Create a dependency that requires specific user roles.

    Args:
        *allowed_roles: Variable number of UserRole values that are allowed

    Returns:
        Callable: Dependency function that validates user role

    Example:
        @router.patch("/{id}/status")
        async def update(user: Annotated[User, Depends(require_role(UserRole.SELLER))]):
            ...
    """

    async def role_checker(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.role not in allowed_roles:
            logger.warning(
                "Access denied: Insufficient permissions",
                user_id=str(current_user.id),
                user_role=current_user.role.value,
                required_roles=[role.value for role in allowed_roles],
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"message": "Insufficient permissions", "code": "FORBIDDEN"},
            )
        return current_user

    return role_checker


CurrentUser = Annotated[User, Depends(get_current_user)]
FulfillmentUser = Annotated[
    User, Depends(require_role(UserRole.SELLER, UserRole.DRIVER, UserRole.ADMIN))
]
BuyerUser = Annotated[User, Depends(require_role(UserRole.BUYER, UserRole.ADMIN))]


def get_stripe_client(request: Request) -> StripeClient:
    """Return the Stripe client created by the application lifespan."""
    client = getattr(request.app.state, "stripe_client", None)
    if client is None:
        logger.error("Stripe client requested before application startup")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": "Payment gateway unavailable", "code": "GATEWAY_UNAVAILABLE"},
        )
    return client


StripeClientDep = Annotated[StripeClient, Depends(get_stripe_client)]


def get_notification_service(db: DatabaseSession) -> NotificationService:
    return NotificationService(db)


def get_order_dispatcher(
    notifications: Annotated[NotificationService, Depends(get_notification_service)],
) -> OrderNotificationDispatcher:
    return OrderNotificationDispatcher(notifications)


def get_order_service(
    db: DatabaseSession,
    dispatcher: Annotated[OrderNotificationDispatcher, Depends(get_order_dispatcher)],
) -> OrderService:
    return OrderService(
        orders=OrderRepository(db),
        products=ProductRepository(db),
        dispatcher=dispatcher,
    )


def get_payment_service(db: DatabaseSession, stripe_client: StripeClientDep) -> PaymentService:
    return PaymentService(
        stripe_client=stripe_client,
        orders=OrderRepository(db),
        transactions=TransactionRepository(db),
    )


def get_webhook_processor(
    db: DatabaseSession,
    stripe_client: StripeClientDep,
    dispatcher: Annotated[OrderNotificationDispatcher, Depends(get_order_dispatcher)],
) -> WebhookProcessor:
    """
    Wire the webhook processor for one request.

    Returns:
        WebhookProcessor sharing the request's database session
    """
    transactions = TransactionRepository(db)
    reconciler = OrderReconciler(
        orders=OrderRepository(db),
        transactions=transactions,
        inventory=InventoryAdjuster(ProductRepository(db)),
        dispatcher=dispatcher,
    )
    return WebhookProcessor(
        stripe_client=stripe_client,
        reconciler=reconciler,
        transactions=transactions,
    )


NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
WebhookProcessorDep = Annotated[WebhookProcessor, Depends(get_webhook_processor)]
