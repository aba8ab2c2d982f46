"""
Coinbase Commerce provider
"""

import httpx

from vault_orders.models.order import Order
from vault_orders.models.provider import ProviderName
from vault_orders.services.payments.base import CheckoutSession, PaymentProvider, error_message

COINBASE_CHARGES_URL = "https://api.commerce.coinbase.com/charges"
COINBASE_API_VERSION = "2018-03-22"


class CoinbaseProvider(PaymentProvider):
    """Fixed-price Coinbase Commerce charge"""

    name = ProviderName.COINBASE

    @property
    def configured(self) -> bool:
        return bool(self.settings.coinbase_commerce_api_key)

    def _create_checkout(self, order: Order) -> CheckoutSession:
        payload = {
            "name": self.settings.product_name,
            "description": self.description(order),
            "pricing_type": "fixed_price",
            "local_price": {
                "amount": str(order.amount),
                "currency": order.currency.upper(),
            },
            "metadata": {"order_id": order.id},
            "redirect_url": self.success_url(order),
            "cancel_url": self.cancel_url(order),
        }
        headers = {
            "Content-Type": "application/json",
            "X-CC-Api-Key": self.settings.coinbase_commerce_api_key,
            "X-CC-Version": COINBASE_API_VERSION,
        }

        try:
            response = self.http.post(COINBASE_CHARGES_URL, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise self._request_failed(f"Coinbase request failed: {e}")

        if response.status_code >= 300:
            raise self._request_failed(
                f"Coinbase charge creation failed: {response.status_code} {error_message(response)}"
            )

        data = response.json().get("data") or {}
        if not data.get("hosted_url") or not data.get("id"):
            raise self._request_failed("Coinbase charge response missing hosted_url")

        return CheckoutSession(
            redirect_url=data["hosted_url"],
            provider_charge_id=data["id"],
            provider=self.name
        )
