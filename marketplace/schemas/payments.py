"""
Payment Pydantic schemas for the webhook endpoint.
"""

from typing import Optional

from pydantic import BaseModel


class WebhookAcknowledgement(BaseModel):
    """Body returned to Stripe once an event has been dispatched."""

    received: bool = True
    event_id: Optional[str] = None
    event_type: Optional[str] = None
