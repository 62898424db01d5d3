"""
Tests for the Stripe webhook endpoint.

Signature checks run against a real StripeClient with a test secret;
reconciliation is mocked.
"""

import uuid
from unittest.mock import AsyncMock

import pytest

from marketplace.api.deps import get_webhook_processor
from marketplace.main import app
from marketplace.services.payments.reconciler import OrderReconciler, ReconciliationResult
from marketplace.services.payments.repository import TransactionRepository
from marketplace.services.payments.stripe_client import StripeClient
from marketplace.services.payments.webhooks import WebhookProcessor

WEBHOOK_URL = "/api/v1/payments/webhook"


@pytest.fixture
def reconciler() -> AsyncMock:
    reconciler = AsyncMock(spec=OrderReconciler)
    reconciler.reconcile_payment_succeeded.return_value = ReconciliationResult(
        payment_intent_id="pi_test_123"
    )
    return reconciler


def _use_processor(reconciler, webhook_secret="whsec_test") -> None:
    processor = WebhookProcessor(
        StripeClient(api_key="sk_test_123", webhook_secret=webhook_secret),
        reconciler,
        AsyncMock(spec=TransactionRepository),
    )
    app.dependency_overrides[get_webhook_processor] = lambda: processor


class TestWebhookEndpoint:
    def test_valid_event_is_acknowledged(
        self, test_client, reconciler, webhook_body, sign_webhook, payment_intent_data
    ):
        _use_processor(reconciler)
        body = webhook_body("payment_intent.succeeded", payment_intent_data([uuid.uuid4()]))

        response = test_client.post(
            WEBHOOK_URL, content=body, headers={"Stripe-Signature": sign_webhook(body)}
        )

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "event_id": "evt_test_1",
            "event_type": "payment_intent.succeeded",
        }
        reconciler.reconcile_payment_succeeded.assert_awaited_once()

    def test_partial_reconciliation_is_still_acknowledged(
        self, test_client, reconciler, webhook_body, sign_webhook, payment_intent_data
    ):
        order_id = uuid.uuid4()
        reconciler.reconcile_payment_succeeded.return_value = ReconciliationResult(
            payment_intent_id="pi_test_123", failed=[order_id]
        )
        _use_processor(reconciler)
        body = webhook_body("payment_intent.succeeded", payment_intent_data([order_id]))

        response = test_client.post(
            WEBHOOK_URL, content=body, headers={"Stripe-Signature": sign_webhook(body)}
        )

        assert response.status_code == 200

    def test_missing_signature(self, test_client, reconciler, webhook_body):
        _use_processor(reconciler)

        body = webhook_body("customer.created", {"id": "cus_1"})

        response = test_client.post(WEBHOOK_URL, content=body)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "MISSING_SIGNATURE"

    def test_bad_signature(self, test_client, reconciler, webhook_body, sign_webhook):
        _use_processor(reconciler)
        body = webhook_body("payment_intent.succeeded", {"id": "pi_1"})

        response = test_client.post(
            WEBHOOK_URL,
            content=body,
            headers={"Stripe-Signature": sign_webhook(body, secret="whsec_wrong")},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_SIGNATURE"
        reconciler.reconcile_payment_succeeded.assert_not_awaited()

    def test_secret_not_configured(self, test_client, reconciler, webhook_body, sign_webhook):
        _use_processor(reconciler, webhook_secret=None)
        body = webhook_body("payment_intent.succeeded", {"id": "pi_1"})

        response = test_client.post(
            WEBHOOK_URL, content=body, headers={"Stripe-Signature": sign_webhook(body)}
        )

        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "WEBHOOK_SECRET_MISSING"

    def test_handler_failure(
        self, test_client, reconciler, webhook_body, sign_webhook, payment_intent_data
    ):
        reconciler.reconcile_payment_succeeded.side_effect = RuntimeError("database down")
        _use_processor(reconciler)
        body = webhook_body("payment_intent.succeeded", payment_intent_data([uuid.uuid4()]))

        response = test_client.post(
            WEBHOOK_URL, content=body, headers={"Stripe-Signature": sign_webhook(body)}
        )

        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "WEBHOOK_PROCESSING_ERROR"
