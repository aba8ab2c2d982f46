"""Hosted checkout adapters for the supported payment providers"""

from vault_orders.services.payments.base import CheckoutSession, PaymentProvider
from vault_orders.services.payments.coinbase import CoinbaseProvider
from vault_orders.services.payments.paypal import PayPalProvider
from vault_orders.services.payments.registry import PaymentProviderRegistry, build_payment_registry
from vault_orders.services.payments.stripe import StripeProvider

__all__ = [
    "CheckoutSession",
    "PaymentProvider",
    "StripeProvider",
    "CoinbaseProvider",
    "PayPalProvider",
    "PaymentProviderRegistry",
    "build_payment_registry",
]
