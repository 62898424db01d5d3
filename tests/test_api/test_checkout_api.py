"""
Tests for the checkout endpoint.
"""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from marketplace.api.deps import get_order_service, get_payment_service
from marketplace.database.models import PaymentMethod
from marketplace.main import app
from marketplace.services.orders.repository import OrderCreationError
from marketplace.services.orders.service import (
    InsufficientStockError,
    OrderService,
    OrderValidationError,
)
from marketplace.services.payments.service import PaymentProcessingError, PaymentService

CHECKOUT_URL = "/api/v1/checkout"


@pytest.fixture
def order_service() -> AsyncMock:
    return AsyncMock(spec=OrderService)


@pytest.fixture
def payment_service() -> AsyncMock:
    service = AsyncMock(spec=PaymentService)
    service.create_checkout_payment.return_value = {
        "payment_intent_id": "pi_test_123",
        "client_secret": "pi_test_123_secret_abc",
        "amount": Decimal("128.00"),
        "currency": "usd",
    }
    return service


@pytest.fixture
def client(test_client, authenticate, order_service, payment_service, buyer):
    app.dependency_overrides[get_order_service] = lambda: order_service
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    authenticate(buyer)
    return test_client


def checkout_body(**overrides) -> dict:
    body = {
        "items": [{"product_id": str(uuid.uuid4()), "quantity": 2, "color": " Red "}],
        "shipping_address": {
            "full_name": "Jane Buyer",
            "street_address": "1 Main St",
            "city": "Springfield",
            "postal_code": "12345",
            "country": "us",
        },
    }
    body.update(overrides)
    return body


class TestCheckout:
    def test_card_checkout_returns_payment_intent(
        self, client, order_service, payment_service, make_order, buyer
    ):
        order = make_order()
        order_service.create_orders.return_value = [order]

        response = client.post(CHECKOUT_URL, json=checkout_body(notes="Leave at door"))

        assert response.status_code == 201
        body = response.json()
        assert body["payment_intent_id"] == "pi_test_123"
        assert body["client_secret"] == "pi_test_123_secret_abc"
        assert Decimal(body["amount"]) == Decimal("128.00")
        assert body["orders"][0]["order_number"] == order.order_number

        kwargs = order_service.create_orders.await_args.kwargs
        assert kwargs["customer"] is buyer
        assert kwargs["items"][0].color == "Red"
        assert kwargs["shipping_address"]["country"] == "US"
        assert kwargs["notes"] == "Leave at door"
        payment_service.create_checkout_payment.assert_awaited_once_with([order], buyer)

    def test_cash_on_delivery_skips_payment(
        self, client, order_service, payment_service, make_order
    ):
        orders = [make_order(payment_method=PaymentMethod.CASH_ON_DELIVERY) for _ in range(2)]
        order_service.create_orders.return_value = orders

        response = client.post(
            CHECKOUT_URL, json=checkout_body(payment_method="cash_on_delivery")
        )

        assert response.status_code == 201
        body = response.json()
        assert body["payment_intent_id"] is None
        assert Decimal(body["amount"]) == Decimal("256.00")
        payment_service.create_checkout_payment.assert_not_awaited()

    def test_insufficient_stock(self, client, order_service):
        order_service.create_orders.side_effect = InsufficientStockError(
            "Insufficient stock for Trail Running Shoe", available=1, requested=2
        )

        response = client.post(CHECKOUT_URL, json=checkout_body())

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INSUFFICIENT_STOCK"

    def test_unknown_product(self, client, order_service):
        order_service.create_orders.side_effect = OrderValidationError(
            "Product not found", code="PRODUCT_NOT_FOUND"
        )

        response = client.post(CHECKOUT_URL, json=checkout_body())

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "PRODUCT_NOT_FOUND"

    def test_order_storage_failure(self, client, order_service):
        order_service.create_orders.side_effect = OrderCreationError("duplicate order number")

        response = client.post(CHECKOUT_URL, json=checkout_body())

        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "ORDER_CREATION_ERROR"

    def test_payment_failure(self, client, order_service, payment_service, make_order):
        order_service.create_orders.return_value = [make_order()]
        payment_service.create_checkout_payment.side_effect = PaymentProcessingError(
            "Failed to create payment"
        )

        response = client.post(CHECKOUT_URL, json=checkout_body())

        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "PAYMENT_PROCESSING_ERROR"

    def test_empty_cart_is_invalid(self, client, order_service):
        response = client.post(CHECKOUT_URL, json=checkout_body(items=[]))

        assert response.status_code == 422
        order_service.create_orders.assert_not_awaited()

    def test_sellers_cannot_check_out(self, client, authenticate, order_service, seller):
        authenticate(seller)

        response = client.post(CHECKOUT_URL, json=checkout_body())

        assert response.status_code == 403
