"""
Stripe Checkout provider
"""

import stripe

from vault_orders.models.order import Order
from vault_orders.models.provider import ProviderName
from vault_orders.services.payments.base import CheckoutSession, PaymentProvider, to_minor_units


class StripeProvider(PaymentProvider):
    """Hosted Stripe Checkout session in ``payment`` mode"""

    name = ProviderName.STRIPE

    @property
    def configured(self) -> bool:
        return bool(self.settings.stripe_secret_key)

    def success_url(self, order: Order) -> str:
        # Stripe substitutes {CHECKOUT_SESSION_ID} itself
        return f"{super().success_url(order)}&session_id={{CHECKOUT_SESSION_ID}}"

    def _create_checkout(self, order: Order) -> CheckoutSession:
        params = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": order.currency.lower(),
                        "product_data": {"name": self.description(order)},
                        "unit_amount": to_minor_units(order.amount, order.currency),
                    },
                    "quantity": 1,
                }
            ],
            "success_url": self.success_url(order),
            "cancel_url": self.cancel_url(order),
            "client_reference_id": order.id,
            "metadata": {"orderId": order.id},
        }

        try:
            session = stripe.checkout.Session.create(
                api_key=self.settings.stripe_secret_key,
                idempotency_key=f"checkout-{order.id}",
                **params
            )
        except stripe.StripeError as e:
            raise self._request_failed(f"Stripe checkout failed: {e.user_message or str(e)}")

        if not session.url:
            raise self._request_failed("Stripe checkout session has no URL")

        return CheckoutSession(
            redirect_url=session.url,
            provider_charge_id=session.id,
            provider=self.name
        )
