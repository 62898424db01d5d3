"""
Payment webhook API endpoint.

Stripe posts payment events here. The raw body is verified against the
``Stripe-Signature`` header before anything is processed: a bad signature
or payload is answered with 400, a missing signing secret with 500. Once
an event is dispatched it is acknowledged with 200 even when some orders
could not be reconciled, since those failures are logged and retrying the
whole event would not fix them.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Header, HTTPException, Request, status

from marketplace.api.deps import WebhookProcessorDep
from marketplace.core.logging import get_logger
from marketplace.core.rate_limit import limiter
from marketplace.schemas.payments import WebhookAcknowledgement
from marketplace.services.payments.service import (
    PaymentProcessingError,
    WebhookConfigurationError,
    WebhookVerificationError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/webhook",
    response_model=WebhookAcknowledgement,
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhook",
    description="Verify and process Stripe webhook events",
)
@limiter.exempt
async def handle_webhook(
    request: Request,
    processor: WebhookProcessorDep,
    stripe_signature: Annotated[Optional[str], Header(alias="stripe-signature")] = None,
) -> WebhookAcknowledgement:
    """
    Handle Stripe webhook event.

    Args:
        request: FastAPI request object
        processor: Webhook processor
        stripe_signature: Stripe signature header

    Returns:
        Acknowledgement with the event id

    Raises:
        HTTPException: 400 for invalid signature or payload, 500 when no
            signing secret is configured or a handler fails outright
    """
    payload = await request.body()
    logger.info("Received Stripe webhook", payload_bytes=len(payload))

    try:
        result = await processor.handle_webhook(payload=payload, signature=stripe_signature)

    except WebhookConfigurationError as e:
        logger.error("Webhook secret not configured", code=e.context.get("code"))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Webhook secret not configured", "code": "WEBHOOK_SECRET_MISSING"},
        ) from e

    except WebhookVerificationError as e:
        logger.warning("Webhook rejected", error=str(e), code=e.context.get("code"))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "Invalid webhook signature or payload",
                "code": e.context.get("code") or "INVALID_SIGNATURE",
            },
        ) from e

    except PaymentProcessingError as e:
        logger.error("Webhook processing failed", error=str(e), context=e.context)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to process webhook", "code": "WEBHOOK_PROCESSING_ERROR"},
        ) from e

    return WebhookAcknowledgement(
        received=True,
        event_id=result["event_id"],
        event_type=result["event_type"],
    )
