"""
Tests for the payment provider adapters

HTTP providers run against httpx.MockTransport; Stripe's SDK call is patched.
"""

import json
from decimal import Decimal
from unittest.mock import Mock, patch

import httpx
import pytest
import stripe

from vault_orders.errors import ConfigurationError, ProviderNotConfigured, ProviderRequestFailed, ValidationError
from vault_orders.models.provider import ProviderName
from vault_orders.services.monitoring.circuit_breakers import create_breaker
from vault_orders.services.payments import (
    CoinbaseProvider,
    PayPalProvider,
    PaymentProviderRegistry,
    StripeProvider,
    build_payment_registry,
)
from vault_orders.services.payments.base import to_minor_units
from tests.conftest import make_order, make_settings


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestMinorUnits:
    def test_two_decimal_currency(self):
        assert to_minor_units(Decimal("33.33"), "USD") == 3333

    def test_rounds_half_up(self):
        assert to_minor_units(Decimal("10.005"), "usd") == 1001

    def test_zero_decimal_currency(self):
        assert to_minor_units(Decimal("500"), "JPY") == 500


class TestStripeProvider:
    def test_creates_checkout_session(self):
        provider = StripeProvider(make_settings(stripe_secret_key="sk_test_1"))
        order = make_order("o1")

        with patch("stripe.checkout.Session.create") as create:
            create.return_value = Mock(url="https://checkout.stripe.test/cs_1", id="cs_1")
            session = provider.create_checkout(order)

        assert session.redirect_url == "https://checkout.stripe.test/cs_1"
        assert session.provider_charge_id == "cs_1"
        assert session.provider == ProviderName.STRIPE

        kwargs = create.call_args.kwargs
        assert kwargs["api_key"] == "sk_test_1"
        assert kwargs["mode"] == "payment"
        assert kwargs["metadata"] == {"orderId": "o1"}
        assert kwargs["client_reference_id"] == "o1"
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 3333
        assert kwargs["line_items"][0]["price_data"]["currency"] == "usd"
        assert kwargs["success_url"] == "https://vault.test/store/success?order=o1&session_id={CHECKOUT_SESSION_ID}"
        assert kwargs["cancel_url"] == "https://vault.test/store/cancel?order=o1"

    def test_sdk_error_becomes_provider_failure(self):
        provider = StripeProvider(make_settings(stripe_secret_key="sk_test_1"))

        with patch("stripe.checkout.Session.create", side_effect=stripe.StripeError("card declined")):
            with pytest.raises(ProviderRequestFailed):
                provider.create_checkout(make_order("o1"))

    def test_not_configured(self):
        provider = StripeProvider(make_settings())

        with patch("stripe.checkout.Session.create") as create:
            with pytest.raises(ProviderNotConfigured):
                provider.create_checkout(make_order("o1"))

        create.assert_not_called()


class TestCoinbaseProvider:
    def test_creates_charge(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={"data": {"id": "charge-1", "hosted_url": "https://commerce.test/charge-1"}})

        provider = CoinbaseProvider(make_settings(coinbase_commerce_api_key="cb-key"), http_client=mock_client(handler))
        session = provider.create_checkout(make_order("o1"))

        assert session.redirect_url == "https://commerce.test/charge-1"
        assert session.provider_charge_id == "charge-1"

        request = requests[0]
        payload = json.loads(request.content)
        assert str(request.url) == "https://api.commerce.coinbase.com/charges"
        assert request.headers["X-CC-Api-Key"] == "cb-key"
        assert request.headers["X-CC-Version"] == "2018-03-22"
        assert payload["pricing_type"] == "fixed_price"
        assert payload["local_price"] == {"amount": "33.33", "currency": "USD"}
        assert payload["metadata"] == {"order_id": "o1"}

    def test_error_response(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"message": "invalid price"}})

        provider = CoinbaseProvider(make_settings(coinbase_commerce_api_key="cb-key"), http_client=mock_client(handler))

        with pytest.raises(ProviderRequestFailed) as exc_info:
            provider.create_checkout(make_order("o1"))

        assert "invalid price" in exc_info.value.message

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        provider = CoinbaseProvider(make_settings(coinbase_commerce_api_key="cb-key"), http_client=mock_client(handler))

        with pytest.raises(ProviderRequestFailed):
            provider.create_checkout(make_order("o1"))

    def test_circuit_opens_after_repeated_failures(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={})

        settings = make_settings(coinbase_commerce_api_key="cb-key", circuit_breaker_fail_max=2)
        provider = CoinbaseProvider(
            settings,
            http_client=mock_client(handler),
            breaker=create_breaker("coinbase-test", settings)
        )

        for _ in range(3):
            with pytest.raises(ProviderRequestFailed):
                provider.create_checkout(make_order("o1"))

        assert len(calls) == 2


class TestPayPalProvider:
    def paypal_handler(self, calls):
        def handler(request):
            calls.append(request)
            if request.url.path == "/v1/oauth2/token":
                return httpx.Response(200, json={"access_token": "A21-token", "expires_in": 32400})
            if request.url.path == "/v2/checkout/orders":
                return httpx.Response(201, json={
                    "id": "PAYPAL-ORDER-1",
                    "links": [
                        {"rel": "self", "href": "https://api.sandbox.paypal.test/v2/checkout/orders/PAYPAL-ORDER-1"},
                        {"rel": "approve", "href": "https://www.sandbox.paypal.test/checkoutnow?token=PAYPAL-ORDER-1"},
                    ],
                })
            return httpx.Response(404)
        return handler

    def settings(self, **overrides):
        return make_settings(paypal_client_id="pp-id", paypal_secret="pp-secret", **overrides)

    def test_creates_order(self):
        calls = []
        provider = PayPalProvider(self.settings(), http_client=mock_client(self.paypal_handler(calls)))

        session = provider.create_checkout(make_order("o1"))

        assert session.redirect_url == "https://www.sandbox.paypal.test/checkoutnow?token=PAYPAL-ORDER-1"
        assert session.provider_charge_id == "PAYPAL-ORDER-1"

        token_request, order_request = calls
        assert token_request.url.host == "api-m.sandbox.paypal.com"
        assert token_request.headers["Authorization"].startswith("Basic ")
        assert order_request.headers["Authorization"] == "Bearer A21-token"
        assert order_request.headers["PayPal-Request-Id"] == "checkout-o1"

        unit = json.loads(order_request.content)["purchase_units"][0]
        assert unit["custom_id"] == "o1"
        assert unit["reference_id"] == "o1"
        assert unit["amount"] == {"currency_code": "USD", "value": "33.33"}

    def test_access_token_is_cached(self):
        calls = []
        provider = PayPalProvider(self.settings(), http_client=mock_client(self.paypal_handler(calls)))

        provider.create_checkout(make_order("o1"))
        provider.create_checkout(make_order("o2"))

        assert [request.url.path for request in calls].count("/v1/oauth2/token") == 1

    def test_live_mode_url(self):
        assert PayPalProvider(self.settings(paypal_mode="live")).base_api_url == "https://api-m.paypal.com"

    def test_token_failure(self):
        def handler(request):
            return httpx.Response(401, json={"error": "invalid_client", "error_description": "Client Authentication failed"})

        provider = PayPalProvider(self.settings(), http_client=mock_client(handler))

        with pytest.raises(ProviderRequestFailed) as exc_info:
            provider.create_checkout(make_order("o1"))

        assert "Client Authentication failed" in exc_info.value.message


class TestRegistry:
    def test_default_and_override(self):
        registry = build_payment_registry(make_settings(payments_provider="Coinbase"))

        assert registry.get().name == ProviderName.COINBASE
        assert registry.get(ProviderName.PAYPAL).name == ProviderName.PAYPAL
        assert isinstance(registry.paypal, PayPalProvider)

    def test_every_provider_has_its_own_breaker(self):
        registry = build_payment_registry(make_settings())

        breakers = [provider.breaker for provider in registry.providers.values()]
        assert len({id(breaker) for breaker in breakers}) == 3

    def test_unknown_default_rejected(self):
        with pytest.raises(ValidationError):
            build_payment_registry(make_settings(payments_provider="bitpay"))

    def test_default_must_be_registered(self):
        with pytest.raises(ConfigurationError):
            PaymentProviderRegistry({}, ProviderName.STRIPE)
