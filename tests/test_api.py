"""
HTTP API tests

Runs the real application (in-memory SQLite, Coinbase Commerce behind a
mock transport) through FastAPI's TestClient.
"""

import hashlib
import hmac
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from vault_orders.main import create_app
from tests.conftest import FakeClock, make_settings

COINBASE_SECRET = "coinbase-webhook-secret"
ADMIN_HEADERS = {"Authorization": "Bearer admin-secret"}


def coinbase_handler(request: httpx.Request) -> httpx.Response:
    payload = json.loads(request.content)
    order_id = payload["metadata"]["order_id"]
    return httpx.Response(201, json={
        "data": {
            "id": f"charge-{order_id}",
            "hosted_url": f"https://commerce.coinbase.com/charges/{order_id}",
        }
    })


def coinbase_webhook(order_id, event_type="charge:confirmed"):
    return {
        "id": "evt-1",
        "event": {
            "type": event_type,
            "data": {"id": f"charge-{order_id}", "metadata": {"order_id": order_id}},
        },
    }


def post_coinbase_webhook(client, body, signature=None):
    raw = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
    if signature is None:
        signature = hmac.new(COINBASE_SECRET.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    return client.post(
        "/webhooks/coinbase",
        content=raw,
        headers={"x-cc-webhook-signature": signature, "Content-Type": "application/json"}
    )


@pytest.fixture
def client():
    settings = make_settings(payments_provider="coinbase", coinbase_commerce_api_key="cc-key")
    http_client = httpx.Client(transport=httpx.MockTransport(coinbase_handler))
    app = create_app(settings, http_client=http_client, clock=FakeClock())
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"]["scheduler"] == "stopped"
        assert body["services"]["payments"]["coinbase"] == "configured"
        assert body["services"]["payments"]["stripe"] == "not_configured"

    def test_correlation_id_header(self, client):
        response = client.get("/", headers={"X-Request-ID": "a5c3c9d4-8f2e-4b7a-9c1d-2e3f4a5b6c7d"})

        assert response.headers["X-Request-ID"] == "a5c3c9d4-8f2e-4b7a-9c1d-2e3f4a5b6c7d"


class TestPurchaseFlow:
    def test_walletless_purchase_end_to_end(self, client):
        created = client.post("/orders", json={})
        assert created.status_code == 201
        body = created.json()
        order_id = body["orderId"]
        token = body["claimToken"]
        assert body["paymentUrl"] == f"https://commerce.coinbase.com/charges/{order_id}"
        assert body["provider"] == "coinbase"

        paid = post_coinbase_webhook(client, coinbase_webhook(order_id))
        assert paid.status_code == 200
        assert paid.json() == {
            "received": True,
            "cached": False,
            "orderId": order_id,
            "status": "paid",
            "paymentId": f"charge-{order_id}",
        }

        duplicate = post_coinbase_webhook(client, coinbase_webhook(order_id))
        assert duplicate.status_code == 200
        assert duplicate.json()["cached"] is True

        summary = client.get("/claim", params={"token": token})
        assert summary.status_code == 200
        assert summary.json()["claimable"] is True
        assert summary.json()["order"]["status"] == "paid"

        redeemed = client.post("/claim", json={"token": token, "walletAddress": "0xabc"})
        assert redeemed.status_code == 200
        assert redeemed.json()["mintSignature"]

        again = client.post("/claim", json={"token": token, "walletAddress": "0xabc"})
        assert again.status_code == 410
        assert again.json()["error"] == "gone"

        minted = client.post("/mint", json={"orderId": order_id, "walletAddress": "0xabc", "txHash": "0xdeadbeef"})
        assert minted.status_code == 200
        assert minted.json() == {
            "success": True,
            "orderId": order_id,
            "status": "minted",
            "txHash": "0xdeadbeef",
            "cached": False,
        }

        order = client.get(f"/orders/{order_id}").json()
        assert order["status"] == "minted"
        assert order["mintTxHash"] == "0xdeadbeef"
        assert "claimToken" not in order

    def test_wallet_order_has_no_claim_token(self, client):
        response = client.post("/orders", json={"walletAddress": "0xabc"})

        assert response.status_code == 201
        assert "claimToken" not in response.json()

    def test_claim_link(self, client):
        token = client.post("/orders", json={}).json()["claimToken"]

        response = client.post("/claim-link", json={"claimToken": token})

        assert response.status_code == 200
        assert response.json()["claimLink"] == f"https://vault.test/mint?claim={token}"

    def test_unknown_order(self, client):
        response = client.get("/orders/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestCheckoutFallback:
    def test_unconfigured_provider_then_single_fallback(self, client):
        failed = client.post("/orders", json={"walletAddress": "0xabc", "paymentProvider": "stripe"})
        assert failed.status_code == 500
        assert failed.json()["error"] == "provider_not_configured"
        order_id = failed.json()["orderId"]

        retried = client.post(f"/orders/{order_id}/checkout", json={"paymentProvider": "coinbase"})
        assert retried.status_code == 200
        assert retried.json()["paymentUrl"] == f"https://commerce.coinbase.com/charges/{order_id}"

        second = client.post(f"/orders/{order_id}/checkout", json={"paymentProvider": "paypal"})
        assert second.status_code == 409

    def test_walletless_fallback_keeps_claim_token(self, client):
        failed = client.post("/orders", json={"paymentProvider": "stripe"})
        assert failed.status_code == 500
        token = failed.json()["claimToken"]
        order_id = failed.json()["orderId"]

        retried = client.post(f"/orders/{order_id}/checkout", json={"paymentProvider": "coinbase"})
        assert retried.status_code == 200
        assert retried.json()["claimToken"] == token

        assert post_coinbase_webhook(client, coinbase_webhook(order_id)).status_code == 200
        redeemed = client.post("/claim", json={"token": token, "walletAddress": "0xabc"})
        assert redeemed.status_code == 200
        assert redeemed.json()["orderId"] == order_id

    def test_started_checkout_cannot_fall_back(self, client):
        created = client.post("/orders", json={"walletAddress": "0xabc"})
        assert created.status_code == 201
        order_id = created.json()["orderId"]

        response = client.post(f"/orders/{order_id}/checkout", json={"paymentProvider": "paypal"})

        assert response.status_code == 409
        assert client.get(f"/orders/{order_id}").json()["paymentProvider"] == "coinbase"

    def test_unknown_provider(self, client):
        response = client.post("/orders", json={"paymentProvider": "bitpay"})

        assert response.status_code == 400
        assert response.json()["supported"] == ["stripe", "coinbase", "paypal"]


class TestWebhooks:
    def test_bad_signature(self, client):
        order_id = client.post("/orders", json={"walletAddress": "0xabc"}).json()["orderId"]

        response = post_coinbase_webhook(client, coinbase_webhook(order_id), signature="00" * 32)

        assert response.status_code == 401
        assert client.get(f"/orders/{order_id}").json()["status"] == "pending"

    def test_missing_signature_header(self, client):
        response = client.post("/webhooks/coinbase", content=b"{}")

        assert response.status_code == 400

    def test_unknown_provider(self, client):
        response = client.post("/webhooks/bitpay", content=b"{}")

        assert response.status_code == 400

    def test_unknown_order(self, client):
        response = post_coinbase_webhook(client, coinbase_webhook("missing"))

        assert response.status_code == 404

    def test_ignored_event(self, client):
        response = post_coinbase_webhook(client, coinbase_webhook("o1", event_type="charge:created"))

        assert response.status_code == 200
        assert response.json() == {"received": True, "ignored": True}

    def test_failed_payment(self, client):
        order_id = client.post("/orders", json={"walletAddress": "0xabc"}).json()["orderId"]

        response = post_coinbase_webhook(client, coinbase_webhook(order_id, event_type="charge:failed"))

        assert response.status_code == 200
        assert client.get(f"/orders/{order_id}").json()["status"] == "failed"

    def test_malformed_body_is_dead_lettered(self, client):
        response = post_coinbase_webhook(client, b"not json")

        assert response.status_code == 200
        assert response.json() == {"received": True, "deadLettered": True}

        dead_letters = client.get("/admin/webhooks/dead-letter", headers=ADMIN_HEADERS).json()
        assert dead_letters["count"] == 1
        assert dead_letters["deadLetters"][0]["rawBody"] == "not json"


class TestMint:
    def test_pending_order_conflicts(self, client):
        order_id = client.post("/orders", json={"walletAddress": "0xabc"}).json()["orderId"]

        response = client.post("/mint", json={"orderId": order_id, "walletAddress": "0xabc", "txHash": "0x1"})

        assert response.status_code == 409
        assert client.get(f"/orders/{order_id}").json()["status"] == "pending"

    def test_missing_field(self, client):
        response = client.post("/mint", json={"orderId": "o1", "walletAddress": "0xabc"})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"


class TestAdmin:
    def test_requires_bearer_secret(self, client):
        assert client.get("/admin/orders").status_code == 401
        assert client.get("/admin/orders", headers={"Authorization": "Bearer wrong"}).status_code == 401

    def test_lists_orders_and_claims(self, client):
        created = client.post("/orders", json={}).json()
        post_coinbase_webhook(client, coinbase_webhook(created["orderId"]))

        orders = client.get("/admin/orders", headers=ADMIN_HEADERS).json()
        claims = client.get("/admin/claims", headers=ADMIN_HEADERS).json()

        assert orders["count"] == 1
        assert orders["orders"][0]["id"] == created["orderId"]
        assert claims["count"] == 1
        assert claims["claims"][0]["status"] == "active"

    def test_limit_validated(self, client):
        response = client.get("/admin/orders", params={"limit": 0}, headers=ADMIN_HEADERS)

        assert response.status_code == 400
