"""
Order Pydantic schemas for API request/response validation.

This module defines the checkout request, the order status update and
cancellation requests, and the order responses with line items and
tracking history.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketplace.database.models.order import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)


class ShippingAddressRequest(BaseModel):
    """Delivery address for a checkout."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(..., min_length=1, max_length=200, description="Recipient name")
    street_address: str = Field(..., min_length=1, max_length=255, description="Street address")
    city: str = Field(..., min_length=1, max_length=100, description="City")
    state: Optional[str] = Field(None, max_length=100, description="State or region")
    postal_code: str = Field(..., min_length=3, max_length=20, description="Postal code")
    country: str = Field(
        default="US",
        min_length=2,
        max_length=2,
        description="Country code (2 letters)",
    )
    phone: Optional[str] = Field(None, max_length=20, description="Contact phone")

    @field_validator("country")
    @classmethod
    def validate_country_code(cls, v: str) -> str:
        """Validate country code format."""
        return v.upper()


class CheckoutItemRequest(BaseModel):
    """One product in the cart."""

    product_id: UUID = Field(..., description="Product identifier")
    quantity: int = Field(..., ge=1, le=100, description="Number of units")
    color: Optional[str] = Field(
        None,
        max_length=50,
        description="Color variant selector",
    )

    @field_validator("color")
    @classmethod
    def blank_color_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class CheckoutRequest(BaseModel):
    """Checkout of the whole cart."""

    items: list[CheckoutItemRequest] = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Cart items",
    )
    shipping_address: ShippingAddressRequest
    payment_method: PaymentMethod = Field(
        default=PaymentMethod.CARD,
        description="Payment method",
    )
    notes: Optional[str] = Field(None, max_length=1000, description="Buyer notes")


class OrderStatusUpdateRequest(BaseModel):
    """Fulfillment status change."""

    status: OrderStatus = Field(..., description="Target order status")
    reason: Optional[str] = Field(None, max_length=500, description="Reason or note")
    location: Optional[str] = Field(None, max_length=255, description="Reported location")

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v):
        if isinstance(v, str):
            return OrderStatus.from_string(v)
        return v


class OrderCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500, description="Cancellation reason")


class OrderItemResponse(BaseModel):
    """Frozen line item."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: Optional[UUID] = None
    seller_id: Optional[UUID] = None
    title: str
    price: Decimal
    quantity: int
    color: Optional[str] = None
    image_url: Optional[str] = None


class TrackingEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: OrderStatus
    description: str
    location: Optional[str] = None
    actor_id: Optional[UUID] = None
    occurred_at: datetime


class OrderResponse(BaseModel):
    """Complete order response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    customer_id: UUID
    seller_id: Optional[UUID] = None
    driver_id: Optional[UUID] = None
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    items: list[OrderItemResponse]
    subtotal: Decimal
    shipping_fee: Decimal
    marketplace_fee: Decimal
    taxes: Decimal
    total: Decimal
    shipping_address: dict
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    refund_reason: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    tracking_events: list[TrackingEventResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class OrderSummaryResponse(BaseModel):
    """Order row for listings and checkout results."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    seller_id: Optional[UUID] = None
    status: OrderStatus
    payment_status: PaymentStatus
    total: Decimal
    created_at: datetime


class OrderListResponse(BaseModel):
    """Paginated order listing."""

    items: list[OrderSummaryResponse]
    total: int
    skip: int
    limit: int


class CheckoutResponse(BaseModel):
    """Result of a checkout."""

    orders: list[OrderSummaryResponse]
    payment_intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    amount: Decimal
    currency: str
