"""
Tests for health endpoints and the cross-cutting middleware.
"""

from unittest.mock import AsyncMock

from marketplace.api.deps import get_order_service
from marketplace.main import app


class TestHealthEndpoints:
    def test_health(self, test_client):
        response = test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["environment"] == "test"

    def test_liveness(self, test_client):
        response = test_client.get("/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_ready(self, test_client, monkeypatch):
        monkeypatch.setattr("marketplace.main.check_database_health", AsyncMock(return_value=True))

        response = test_client.get("/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["database"] == "healthy"
        assert body["payment_gateway"] == "configured"

    def test_not_ready_without_database(self, test_client, monkeypatch):
        monkeypatch.setattr(
            "marketplace.main.check_database_health", AsyncMock(return_value=False)
        )

        response = test_client.get("/ready")

        assert response.status_code == 503
        assert response.json()["database"] == "unhealthy"

    def test_stripe_client_created_on_startup(self, test_client):
        assert app.state.stripe_client is not None


class TestMiddleware:
    def test_security_headers(self, test_client):
        response = test_client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Strict-Transport-Security" not in response.headers

    def test_request_id_is_echoed(self, test_client):
        response = test_client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_is_generated(self, test_client):
        response = test_client.get("/health")

        assert response.headers["X-Request-ID"]

    def test_validation_errors_are_structured(self, test_client, authenticate, buyer):
        authenticate(buyer)
        app.dependency_overrides[get_order_service] = lambda: AsyncMock()

        response = test_client.get("/api/v1/orders", params={"limit": 0})

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "Validation Error"
        assert body["details"][0]["loc"] == ["query", "limit"]
