"""
Tests for the order API endpoints.

Requests run through the real OrderService with mocked repositories, so
routing, access rules, error mapping and serialization are covered
together.
"""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from marketplace.api.deps import get_order_service
from marketplace.database.connection import get_db
from marketplace.database.models import OrderStatus, PaymentStatus
from marketplace.main import app
from marketplace.services.inventory.repository import ProductRepository
from marketplace.services.notifications.dispatcher import OrderNotificationDispatcher
from marketplace.services.orders.repository import OrderRepository
from marketplace.services.orders.service import OrderService

BASE_URL = "/api/v1/orders"


@pytest.fixture
def order_repository() -> AsyncMock:
    repository = AsyncMock(spec=OrderRepository)
    repository.save.side_effect = lambda order: order
    return repository


@pytest.fixture
def dispatcher() -> AsyncMock:
    return AsyncMock(spec=OrderNotificationDispatcher)


@pytest.fixture
def client(test_client, order_repository, dispatcher):
    service = OrderService(
        orders=order_repository,
        products=AsyncMock(spec=ProductRepository),
        dispatcher=dispatcher,
    )
    app.dependency_overrides[get_order_service] = lambda: service
    return test_client


def _serve(order_repository: AsyncMock, order) -> None:
    order_repository.get_order_by_id.side_effect = (
        lambda order_id: order if order_id == order.id else None
    )


# ============================================================================
# Reading Orders
# ============================================================================


class TestReadOrders:
    def test_requires_authentication(self, client):
        app.dependency_overrides[get_db] = lambda: AsyncMock()

        response = client.get(BASE_URL)

        assert response.status_code == 401

    def test_list_orders(self, client, authenticate, order_repository, make_order, buyer):
        authenticate(buyer)
        orders = [make_order(), make_order()]
        order_repository.list_orders.return_value = (orders, 2)

        response = client.get(BASE_URL, params={"status": "pending", "limit": 10})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert [item["id"] for item in body["items"]] == [str(o.id) for o in orders]
        kwargs = order_repository.list_orders.await_args.kwargs
        assert kwargs["user_id"] == buyer.id
        assert kwargs["status"] == OrderStatus.PENDING
        assert kwargs["limit"] == 10

    def test_get_order_details(self, client, authenticate, order_repository, make_order, buyer):
        authenticate(buyer)
        order = make_order()
        _serve(order_repository, order)

        response = client.get(f"{BASE_URL}/{order.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["order_number"] == order.order_number
        assert Decimal(body["total"]) == Decimal("128.00")
        assert Decimal(body["shipping_fee"]) == Decimal("10.00")
        assert len(body["items"]) == 1
        assert body["tracking_events"][0]["status"] == "pending"

    def test_get_unknown_order(self, client, authenticate, order_repository, buyer):
        authenticate(buyer)
        order_repository.get_order_by_id.return_value = None

        response = client.get(f"{BASE_URL}/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "ORDER_NOT_FOUND"

    def test_get_order_of_someone_else(
        self, client, authenticate, order_repository, make_order, make_user
    ):
        authenticate(make_user())
        order = make_order()
        _serve(order_repository, order)

        response = client.get(f"{BASE_URL}/{order.id}")

        assert response.status_code == 403


# ============================================================================
# Status Updates
# ============================================================================


class TestUpdateStatus:
    def test_seller_ships_order(
        self, client, authenticate, order_repository, dispatcher, make_order, seller
    ):
        authenticate(seller)
        order = make_order(status=OrderStatus.PROCESSING, payment_status=PaymentStatus.COMPLETED)
        _serve(order_repository, order)

        response = client.patch(
            f"{BASE_URL}/{order.id}/status",
            json={"status": "in_transit", "location": "Warehouse 4"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "in-transit"
        assert body["tracking_events"][-1]["location"] == "Warehouse 4"
        dispatcher.notify_status_changed.assert_awaited_once_with(order)

    def test_buyer_cannot_update_status(self, client, authenticate, make_order, buyer):
        authenticate(buyer)

        response = client.patch(
            f"{BASE_URL}/{uuid.uuid4()}/status", json={"status": "in-transit"}
        )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "FORBIDDEN"

    def test_illegal_transition(self, client, authenticate, order_repository, make_order, seller):
        authenticate(seller)
        order = make_order()
        _serve(order_repository, order)

        response = client.patch(f"{BASE_URL}/{order.id}/status", json={"status": "delivered"})

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["code"] == "INVALID_STATUS_TRANSITION"
        assert detail["current_status"] == "pending"
        assert detail["allowed_transitions"] == ["cancelled", "processing"]
        order_repository.save.assert_not_awaited()

    def test_unknown_status_is_rejected(self, client, authenticate, seller):
        authenticate(seller)

        response = client.patch(f"{BASE_URL}/{uuid.uuid4()}/status", json={"status": "lost"})

        assert response.status_code == 422


# ============================================================================
# Cancellation
# ============================================================================


class TestCancelOrder:
    def test_buyer_cancels(self, client, authenticate, order_repository, make_order, buyer):
        authenticate(buyer)
        order = make_order()
        _serve(order_repository, order)

        response = client.post(f"{BASE_URL}/{order.id}/cancel", json={"reason": "Changed my mind"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "cancelled"
        assert body["cancel_reason"] == "Changed my mind"

    def test_seller_cannot_cancel(self, client, authenticate, order_repository, make_order, seller):
        authenticate(seller)
        order = make_order()
        _serve(order_repository, order)

        response = client.post(f"{BASE_URL}/{order.id}/cancel", json={"reason": "No stock"})

        assert response.status_code == 403

    def test_delivered_order_cannot_be_cancelled(
        self, client, authenticate, order_repository, make_order, buyer
    ):
        authenticate(buyer)
        order = make_order(status=OrderStatus.DELIVERED, payment_status=PaymentStatus.COMPLETED)
        _serve(order_repository, order)

        response = client.post(f"{BASE_URL}/{order.id}/cancel", json={"reason": "Too late"})

        assert response.status_code == 400
        assert response.json()["detail"]["allowed_transitions"] == ["refunded"]
