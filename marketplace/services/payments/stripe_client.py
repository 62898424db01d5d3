"""
Stripe API client wrapper with error handling and retry logic.

The client is constructed once by the application lifespan and injected
into the services that need it. It passes its API key on every request
instead of mutating the ``stripe`` module globals, so several clients with
different keys can coexist (for example in tests).
"""

import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import stripe
from stripe import (
    APIConnectionError,
    APIError,
    AuthenticationError,
    CardError,
    IdempotencyError,
    InvalidRequestError,
    RateLimitError,
    SignatureVerificationError,
    StripeError,
)

from marketplace.core.config import get_settings
from marketplace.core.logging import get_logger

logger = get_logger(__name__)

ZERO_DECIMAL_CURRENCIES = frozenset({"jpy", "krw", "vnd", "clp", "pyg", "ugx"})


class StripeClientError(Exception):
    """Base exception for Stripe client errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        stripe_error: Optional[StripeError] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.code = code
        self.stripe_error = stripe_error
        self.context = context


class StripePaymentError(StripeClientError):
    """Exception for payment processing errors."""


class StripeAuthenticationError(StripeClientError):
    """Exception for authentication errors."""


class StripeRateLimitError(StripeClientError):
    """Exception for rate limit errors."""


class StripeConnectionError(StripeClientError):
    """Exception for connection errors."""


class WebhookSecretMissingError(StripeClientError):
    """Raised when a webhook arrives but no signing secret is configured."""


def to_minor_units(amount: Decimal, currency: str) -> int:
    """
    Convert a major-unit amount to the integer the gateway expects.

    Args:
        amount: Amount in major units, e.g. dollars
        currency: ISO currency code

    Returns:
        Amount in minor units, e.g. cents
    """
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    """Convert a gateway minor-unit amount back to major units."""
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(amount)
    return (Decimal(amount) / Decimal(100)).quantize(Decimal("0.01"))


class StripeClient:
    """
    Stripe API client with error handling and retry logic.

    Transient failures (connection errors, rate limiting, 5xx API errors)
    are retried with exponential backoff; every other gateway error is
    mapped to a ``StripeClientError`` subclass immediately.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        api_version: Optional[str] = None,
        max_retries: int = 3,
        initial_backoff: float = 1.0,
        max_backoff: float = 32.0,
        backoff_multiplier: float = 2.0,
    ):
        """
        Initialize Stripe client with configuration.

        Args:
            api_key: Stripe secret API key (defaults to settings)
            webhook_secret: Stripe webhook signing secret (defaults to settings)
            api_version: Pinned Stripe API version (defaults to settings)
            max_retries: Maximum number of retry attempts
            initial_backoff: Initial backoff delay in seconds
            max_backoff: Maximum backoff delay in seconds
            backoff_multiplier: Backoff multiplier for exponential backoff
        """
        settings = get_settings()
        self.api_key = api_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.api_version = api_version or settings.stripe_api_version
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier

        logger.info(
            "Stripe client initialized",
            max_retries=max_retries,
            webhook_secret_configured=bool(self.webhook_secret),
        )

    def _request_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"api_key": self.api_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        return options

    def _calculate_backoff(self, attempt: int) -> float:
        """
        Calculate exponential backoff delay.

        Args:
            attempt: Current retry attempt number (0-indexed)

        Returns:
            Backoff delay in seconds
        """
        return min(
            self.initial_backoff * (self.backoff_multiplier**attempt),
            self.max_backoff,
        )

    def _should_retry(self, error: StripeError, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return isinstance(error, (APIConnectionError, RateLimitError, APIError))

    def _execute_with_retry(
        self,
        operation: str,
        func: Any,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Execute Stripe API call with exponential backoff retry logic.

        Args:
            operation: Operation name for logging
            func: Stripe API function to execute
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result from Stripe API call

        Raises:
            StripeClientError: If operation fails after all retries
        """
        last_error: Optional[StripeError] = None

        for attempt in range(self.max_retries + 1):
            try:
                result = func(*args, **kwargs, **self._request_options())
                if attempt > 0:
                    logger.info(
                        "Stripe operation succeeded after retry",
                        operation=operation,
                        attempt=attempt,
                    )
                return result

            except AuthenticationError as e:
                logger.error("Stripe authentication error", operation=operation, code=e.code)
                raise StripeAuthenticationError(
                    f"Authentication failed: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except CardError as e:
                logger.warning(
                    "Stripe card error",
                    operation=operation,
                    code=e.code,
                    decline_code=getattr(e, "decline_code", None),
                )
                raise StripePaymentError(
                    f"Card error: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                    decline_code=getattr(e, "decline_code", None),
                ) from e

            except (InvalidRequestError, IdempotencyError) as e:
                logger.error(
                    "Stripe rejected request",
                    operation=operation,
                    error=str(e),
                    code=e.code,
                )
                raise StripeClientError(
                    f"Invalid request: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                    param=getattr(e, "param", None),
                ) from e

            except (RateLimitError, APIConnectionError, APIError) as e:
                last_error = e
                if not self._should_retry(e, attempt):
                    logger.error(
                        "Stripe operation failed",
                        operation=operation,
                        error=str(e),
                        error_type=type(e).__name__,
                        attempt=attempt,
                    )
                    if isinstance(e, RateLimitError):
                        error_cls = StripeRateLimitError
                    elif isinstance(e, APIConnectionError):
                        error_cls = StripeConnectionError
                    else:
                        error_cls = StripeClientError
                    raise error_cls(
                        f"{type(e).__name__}: {e.user_message or str(e)}",
                        code=e.code,
                        stripe_error=e,
                    ) from e

                backoff = self._calculate_backoff(attempt)
                logger.warning(
                    "Transient Stripe error, retrying",
                    operation=operation,
                    error_type=type(e).__name__,
                    attempt=attempt,
                    backoff_seconds=backoff,
                )
                time.sleep(backoff)

            except StripeError as e:
                logger.error(
                    "Unexpected Stripe error",
                    operation=operation,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise StripeClientError(
                    f"Stripe error: {e.user_message or str(e)}",
                    code=getattr(e, "code", None),
                    stripe_error=e,
                ) from e

        raise StripeClientError(
            f"Operation failed after {self.max_retries} retries",
            stripe_error=last_error,
        )

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: Optional[dict[str, str]] = None,
        customer_id: Optional[str] = None,
        receipt_email: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> stripe.PaymentIntent:
        """
        Create a Stripe payment intent.

        Args:
            amount: Payment amount in minor units
            currency: Three-letter ISO currency code
            metadata: Metadata echoed back on webhook events
            customer_id: Stripe customer to attach
            receipt_email: Customer email for receipt
            idempotency_key: Idempotency key for safe retries

        Returns:
            Stripe PaymentIntent object

        Raises:
            StripeClientError: If payment intent creation fails
        """
        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata or {},
        }
        if customer_id:
            params["customer"] = customer_id
        if receipt_email:
            params["receipt_email"] = receipt_email
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        payment_intent = self._execute_with_retry(
            "create_payment_intent",
            stripe.PaymentIntent.create,
            **params,
        )

        logger.info(
            "Payment intent created",
            payment_intent_id=payment_intent.id,
            amount=amount,
            currency=currency,
        )
        return payment_intent

    def cancel_payment_intent(
        self,
        payment_intent_id: str,
        cancellation_reason: Optional[str] = None,
    ) -> stripe.PaymentIntent:
        """
        Cancel a payment intent.

        Args:
            payment_intent_id: Stripe payment intent ID
            cancellation_reason: One of Stripe's cancellation reasons

        Returns:
            Cancelled Stripe PaymentIntent object

        Raises:
            StripeClientError: If cancellation fails
        """
        params: dict[str, Any] = {}
        if cancellation_reason:
            params["cancellation_reason"] = cancellation_reason

        payment_intent = self._execute_with_retry(
            "cancel_payment_intent",
            stripe.PaymentIntent.cancel,
            payment_intent_id,
            **params,
        )

        logger.info(
            "Payment intent cancelled",
            payment_intent_id=payment_intent.id,
            status=payment_intent.status,
        )
        return payment_intent

    def construct_webhook_event(self, payload: bytes, signature: str) -> stripe.Event:
        """
        Construct and verify a webhook event from Stripe.

        Args:
            payload: Raw webhook payload bytes
            signature: Stripe signature header value

        Returns:
            Verified Stripe Event object

        Raises:
            WebhookSecretMissingError: If no signing secret is configured
            StripeClientError: If the payload or the signature is invalid
        """
        if not self.webhook_secret:
            logger.error("Webhook received but no signing secret is configured")
            raise WebhookSecretMissingError(
                "Webhook secret not configured",
                code="WEBHOOK_SECRET_MISSING",
            )

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            logger.warning("Invalid webhook payload", error=str(e))
            raise StripeClientError(
                "Invalid webhook payload",
                code="INVALID_PAYLOAD",
            ) from e
        except SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed", error=str(e))
            raise StripeClientError(
                "Webhook signature verification failed",
                code="INVALID_SIGNATURE",
                stripe_error=e,
            ) from e

        logger.info("Webhook event verified", event_id=event.id, event_type=event.type)
        return event


def get_stripe_client() -> StripeClient:
    """
    Build a Stripe client from application settings.

    Called once by the application lifespan; request handlers receive the
    instance through dependency injection.
    """
    settings = get_settings()
    return StripeClient(max_retries=settings.stripe_max_retries)
