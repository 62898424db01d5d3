"""
Notification template engine with Jinja2 for in-app message rendering.

Each notification type has a title template and a message template. They
are kept in memory with a ``DictLoader`` because in-app notifications are
short plain-text strings.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from jinja2 import (
    DictLoader,
    Environment,
    StrictUndefined,
    Template,
    TemplateError,
    TemplateNotFound,
)

from marketplace.core.logging import get_logger
from marketplace.database.models.notification import NotificationType

logger = get_logger(__name__)


NOTIFICATION_TEMPLATES: Dict[str, str] = {
    "ORDER_CONFIRMED/title": "Order Confirmed",
    "ORDER_CONFIRMED/message": (
        "Your order #{{ order_number }} has been confirmed and is being processed."
    ),
    "NEW_ORDER/title": "New Order Received",
    "NEW_ORDER/message": (
        "You have received a new order #{{ order_number }} "
        "totalling {{ total | currency }}."
    ),
    "PAYMENT_FAILED/title": "Payment Failed",
    "PAYMENT_FAILED/message": (
        "Payment for order #{{ order_number }} failed"
        "{% if reason %}: {{ reason }}{% endif %}. Please try again."
    ),
    "ORDER_CANCELLED/title": "Order Cancelled",
    "ORDER_CANCELLED/message": (
        "Your order #{{ order_number }} has been cancelled"
        "{% if reason %}: {{ reason }}{% endif %}."
    ),
    "ORDER_REFUNDED/title": "Order Refunded",
    "ORDER_REFUNDED/message": (
        "A refund of {{ amount | currency }} for order #{{ order_number }} "
        "has been issued."
    ),
    "ORDER_DELIVERED/title": "Order Delivered",
    "ORDER_DELIVERED/message": "Your order #{{ order_number }} has been delivered.",
    "ORDER_STATUS_UPDATED/title": "Order Update",
    "ORDER_STATUS_UPDATED/message": (
        "Your order #{{ order_number }} is now {{ status | replace('-', ' ') }}."
    ),
}


class TemplateEngineError(Exception):
    """Base exception for template engine errors."""

    def __init__(self, message: str, template_name: Optional[str] = None):
        super().__init__(message)
        self.template_name = template_name


class TemplateNotFoundError(TemplateEngineError):
    """Raised when a template cannot be found."""


class TemplateRenderError(TemplateEngineError):
    """Raised when template rendering fails."""


class TemplateEngine:
    """
    Renders notification titles and messages.

    Undefined variables raise instead of rendering as empty strings, so a
    missing order number surfaces as a render error.
    """

    def __init__(self, templates: Optional[Dict[str, str]] = None):
        """
        Initialize the template engine.

        Args:
            templates: Template sources keyed by ``TYPE/part``. Defaults to
                the built-in notification templates.
        """
        self.env = Environment(
            loader=DictLoader(templates or NOTIFICATION_TEMPLATES),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["currency"] = self._format_currency

    def render(
        self,
        notification_type: NotificationType,
        context: Dict[str, Any],
    ) -> tuple[str, str]:
        """
        Render the title and message for a notification type.

        Args:
            notification_type: Notification type to render
            context: Template variables

        Returns:
            Tuple of (title, message)

        Raises:
            TemplateNotFoundError: If the type has no templates
            TemplateRenderError: If rendering fails
        """
        name = notification_type.value
        try:
            title = self._load_template(f"{name}/title").render(**context).strip()
            message = self._load_template(f"{name}/message").render(**context).strip()
        except TemplateNotFound as e:
            logger.error("Notification template not found", template_name=name)
            raise TemplateNotFoundError(
                f"Notification template not found: {name}", template_name=name
            ) from e
        except TemplateError as e:
            logger.error(
                "Notification template rendering failed",
                template_name=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TemplateRenderError(
                f"Failed to render notification template: {e}", template_name=name
            ) from e

        return title, message

    def _load_template(self, template_path: str) -> Template:
        return self.env.get_template(template_path)

    @staticmethod
    def _format_currency(value: Any) -> str:
        """Format a number as a dollar amount with two decimals."""
        try:
            return f"${Decimal(str(value)):,.2f}"
        except (ArithmeticError, ValueError, TypeError):
            return str(value)


_template_engine: Optional[TemplateEngine] = None


def get_template_engine() -> TemplateEngine:
    """Return the shared template engine, creating it on first use."""
    global _template_engine
    if _template_engine is None:
        _template_engine = TemplateEngine()
    return _template_engine
