"""
API v1 package initialization.
"""

from marketplace.api.v1.checkout import router as checkout_router
from marketplace.api.v1.notifications import router as notifications_router
from marketplace.api.v1.orders import router as orders_router
from marketplace.api.v1.payments import router as payments_router

__all__ = [
    "checkout_router",
    "notifications_router",
    "orders_router",
    "payments_router",
]
