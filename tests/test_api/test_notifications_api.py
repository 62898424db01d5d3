"""
Tests for the notification endpoints.
"""

import uuid
from unittest.mock import AsyncMock

import pytest

from marketplace.api.deps import get_notification_service
from marketplace.main import app
from marketplace.services.notifications.service import (
    NotificationNotFoundError,
    NotificationService,
    NotificationServiceError,
)

BASE_URL = "/api/v1/notifications"


@pytest.fixture
def notification_service() -> AsyncMock:
    return AsyncMock(spec=NotificationService)


@pytest.fixture
def client(test_client, authenticate, notification_service, buyer):
    app.dependency_overrides[get_notification_service] = lambda: notification_service
    authenticate(buyer)
    return test_client


class TestNotificationEndpoints:
    def test_list_notifications(self, client, notification_service, make_notification, buyer):
        notifications = [make_notification(), make_notification(is_read=True)]
        notification_service.list_notifications.return_value = (notifications, 2)
        notification_service.count_unread.return_value = 1

        response = client.get(BASE_URL, params={"unread_only": "true"})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["unread"] == 1
        assert body["items"][0]["type"] == "ORDER_CONFIRMED"
        assert body["items"][0]["meta"] == {"orderNumber": "ORD202401010001"}
        notification_service.list_notifications.assert_awaited_once_with(
            buyer.id, unread_only=True, skip=0, limit=20
        )

    def test_unread_count(self, client, notification_service):
        notification_service.count_unread.return_value = 3

        response = client.get(f"{BASE_URL}/unread-count")

        assert response.status_code == 200
        assert response.json() == {"unread": 3}

    def test_mark_as_read(self, client, notification_service, make_notification, buyer):
        notification = make_notification(is_read=True)
        notification_service.mark_as_read.return_value = notification

        response = client.post(f"{BASE_URL}/{notification.id}/read")

        assert response.status_code == 200
        assert response.json()["is_read"] is True
        notification_service.mark_as_read.assert_awaited_once_with(notification.id, buyer.id)

    def test_mark_unknown_notification(self, client, notification_service):
        notification_service.mark_as_read.side_effect = NotificationNotFoundError(
            "Notification not found"
        )

        response = client.post(f"{BASE_URL}/{uuid.uuid4()}/read")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOTIFICATION_NOT_FOUND"

    def test_mark_all_as_read(self, client, notification_service):
        notification_service.mark_all_as_read.return_value = 5

        response = client.post(f"{BASE_URL}/read-all")

        assert response.status_code == 200
        assert response.json() == {"updated": 5}

    def test_service_failure(self, client, notification_service):
        notification_service.count_unread.side_effect = NotificationServiceError("db down")

        response = client.get(f"{BASE_URL}/unread-count")

        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "NOTIFICATION_ERROR"
