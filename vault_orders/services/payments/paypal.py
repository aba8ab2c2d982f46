"""
PayPal Orders v2 provider

Also exposes an authenticated request helper used for webhook signature
verification against PayPal's API.
"""

import threading
import time
from typing import Optional

import httpx

from vault_orders.models.order import Order
from vault_orders.models.provider import ProviderName
from vault_orders.services.payments.base import CheckoutSession, PaymentProvider, error_message

PAYPAL_API_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}

# Refresh the cached access token this many seconds before PayPal expires it
TOKEN_EXPIRY_MARGIN_SECONDS = 60


class PayPalProvider(PaymentProvider):
    """PayPal order with ``CAPTURE`` intent; the buyer approves on paypal.com"""

    name = ProviderName.PAYPAL

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.settings.paypal_client_id and self.settings.paypal_secret)

    @property
    def base_api_url(self) -> str:
        return PAYPAL_API_URLS["live" if self.settings.paypal_mode == "live" else "sandbox"]

    def get_access_token(self) -> str:
        """OAuth2 client-credentials token, cached until shortly before expiry"""
        with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            try:
                response = self.http.post(
                    f"{self.base_api_url}/v1/oauth2/token",
                    data={"grant_type": "client_credentials"},
                    auth=(self.settings.paypal_client_id, self.settings.paypal_secret),
                    headers={"Accept": "application/json"}
                )
            except httpx.HTTPError as e:
                raise self._request_failed(f"PayPal token request failed: {e}")

            if response.status_code >= 300:
                raise self._request_failed(
                    f"PayPal token request failed: {response.status_code} {error_message(response)}"
                )

            body = response.json()
            self._access_token = body["access_token"]
            expires_in = int(body.get("expires_in", 0))
            self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
            return self._access_token

    def post_authenticated(self, path: str, payload: dict, headers: Optional[dict] = None) -> httpx.Response:
        """POST ``payload`` to ``path`` with a bearer token; returns the raw response"""
        request_headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.get_access_token()}",
        }
        request_headers.update(headers or {})

        try:
            return self.http.post(f"{self.base_api_url}{path}", json=payload, headers=request_headers)
        except httpx.HTTPError as e:
            raise self._request_failed(f"PayPal request to {path} failed: {e}")

    def _create_checkout(self, order: Order) -> CheckoutSession:
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": order.id,
                    "custom_id": order.id,
                    "description": self.description(order),
                    "amount": {
                        "currency_code": order.currency.upper(),
                        "value": f"{order.amount:.2f}",
                    },
                }
            ],
            "application_context": {
                "brand_name": self.settings.product_name,
                "user_action": "PAY_NOW",
                "return_url": self.success_url(order),
                "cancel_url": self.cancel_url(order),
            },
        }

        response = self.post_authenticated(
            "/v2/checkout/orders",
            payload,
            headers={"PayPal-Request-Id": f"checkout-{order.id}"}
        )
        if response.status_code >= 300:
            raise self._request_failed(
                f"PayPal order creation failed: {response.status_code} {error_message(response)}"
            )

        body = response.json()
        approve_url = next(
            (link.get("href") for link in body.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None
        )
        if not approve_url or not body.get("id"):
            raise self._request_failed("PayPal order response missing approve link")

        return CheckoutSession(
            redirect_url=approve_url,
            provider_charge_id=body["id"],
            provider=self.name
        )
