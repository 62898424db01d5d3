"""
Typed views of Stripe webhook events.

Once the signature has been verified the raw body is parsed into a
``WebhookEvent`` whose ``kind`` selects the handler and whose ``payload()``
returns the matching model for ``data.object``. Only the fields the
marketplace reads are declared; everything else is kept as extra data.
"""

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WebhookEventKind(str, Enum):
    """Stripe event types the marketplace handles."""

    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    PAYMENT_CANCELED = "payment_intent.canceled"
    CHARGE_SUCCEEDED = "charge.succeeded"
    CHARGE_FAILED = "charge.failed"
    CHARGE_REFUNDED = "charge.refunded"
    PAYMENT_METHOD_ATTACHED = "payment_method.attached"
    CUSTOMER_CREATED = "customer.created"


def _expandable_id(value: Any) -> Any:
    """Reduce an expanded Stripe object to its id."""
    if isinstance(value, dict):
        return value.get("id")
    return value


class GatewayObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str


class PaymentError(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: Optional[str] = None
    decline_code: Optional[str] = None
    message: Optional[str] = None


class PaymentIntentPayload(GatewayObject):
    """``data.object`` of ``payment_intent.*`` events."""

    amount: int = 0
    currency: str = "usd"
    status: Optional[str] = None
    customer: Optional[str] = None
    latest_charge: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    last_payment_error: Optional[PaymentError] = None
    cancellation_reason: Optional[str] = None

    @field_validator("customer", "latest_charge", mode="before")
    @classmethod
    def collapse_expanded(cls, v: Any) -> Any:
        return _expandable_id(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def stringify_metadata(cls, v: Any) -> dict[str, str]:
        if not v:
            return {}
        return {str(key): "" if value is None else str(value) for key, value in dict(v).items()}


class CardDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    brand: Optional[str] = None
    last4: Optional[str] = None


class PaymentMethodDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    card: Optional[CardDetails] = None


class ChargePayload(GatewayObject):
    """``data.object`` of ``charge.*`` events."""

    amount: int = 0
    amount_refunded: int = 0
    currency: str = "usd"
    payment_intent: Optional[str] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    payment_method_details: Optional[PaymentMethodDetails] = None
    refunds: Optional[dict[str, Any]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("payment_intent", mode="before")
    @classmethod
    def collapse_expanded(cls, v: Any) -> Any:
        return _expandable_id(v)

    @property
    def card_brand(self) -> Optional[str]:
        details = self.payment_method_details
        return details.card.brand if details and details.card else None

    @property
    def card_last4(self) -> Optional[str]:
        details = self.payment_method_details
        return details.card.last4 if details and details.card else None

    @property
    def is_full_refund(self) -> bool:
        return self.amount_refunded >= self.amount > 0

    @property
    def latest_refund(self) -> Optional[dict[str, Any]]:
        data = (self.refunds or {}).get("data") or []
        return data[0] if data else None

    @property
    def refund_reason(self) -> Optional[str]:
        refund = self.latest_refund
        return refund.get("reason") if refund else None


class PaymentMethodPayload(GatewayObject):
    type: Optional[str] = None
    customer: Optional[str] = None

    @field_validator("customer", mode="before")
    @classmethod
    def collapse_expanded(cls, v: Any) -> Any:
        return _expandable_id(v)


class CustomerPayload(GatewayObject):
    email: Optional[str] = None


PAYLOAD_MODELS: dict[WebhookEventKind, type[GatewayObject]] = {
    WebhookEventKind.PAYMENT_SUCCEEDED: PaymentIntentPayload,
    WebhookEventKind.PAYMENT_FAILED: PaymentIntentPayload,
    WebhookEventKind.PAYMENT_CANCELED: PaymentIntentPayload,
    WebhookEventKind.CHARGE_SUCCEEDED: ChargePayload,
    WebhookEventKind.CHARGE_FAILED: ChargePayload,
    WebhookEventKind.CHARGE_REFUNDED: ChargePayload,
    WebhookEventKind.PAYMENT_METHOD_ATTACHED: PaymentMethodPayload,
    WebhookEventKind.CUSTOMER_CREATED: CustomerPayload,
}

EventPayload = Union[
    PaymentIntentPayload, ChargePayload, PaymentMethodPayload, CustomerPayload
]


class EventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: dict[str, Any]


class WebhookEvent(BaseModel):
    """Envelope of a verified Stripe webhook event."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    created: Optional[int] = None
    livemode: bool = False
    data: EventData

    @property
    def kind(self) -> Optional[WebhookEventKind]:
        """The handled event kind, or None for event types the marketplace ignores."""
        try:
            return WebhookEventKind(self.type)
        except ValueError:
            return None

    def payload(self) -> EventPayload:
        """
        Parse ``data.object`` into the model for this event kind.

        Raises:
            ValueError: If the event kind is not handled
            pydantic.ValidationError: If the object does not match the model
        """
        kind = self.kind
        if kind is None:
            raise ValueError(f"Unhandled event type: {self.type}")
        return PAYLOAD_MODELS[kind].model_validate(self.data.object)
