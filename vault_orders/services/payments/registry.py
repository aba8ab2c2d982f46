"""
Payment provider registry
"""

from typing import Dict, Optional

import httpx
import structlog

from vault_orders.config import Settings
from vault_orders.errors import ConfigurationError
from vault_orders.models.provider import ProviderName
from vault_orders.services.monitoring.circuit_breakers import create_breaker
from vault_orders.services.payments.base import PaymentProvider
from vault_orders.services.payments.coinbase import CoinbaseProvider
from vault_orders.services.payments.paypal import PayPalProvider
from vault_orders.services.payments.stripe import StripeProvider

logger = structlog.get_logger(__name__)

PROVIDER_CLASSES = {
    ProviderName.STRIPE: StripeProvider,
    ProviderName.COINBASE: CoinbaseProvider,
    ProviderName.PAYPAL: PayPalProvider,
}


class PaymentProviderRegistry:
    """Looks up providers by name, falling back to the configured default"""

    def __init__(self, providers: Dict[ProviderName, PaymentProvider], default: ProviderName):
        if default not in providers:
            raise ConfigurationError(f"Default payment provider {default.value} is not registered")
        self.providers = providers
        self.default = default

    def get(self, name: Optional[ProviderName] = None) -> PaymentProvider:
        provider = self.providers.get(name or self.default)
        if provider is None:
            raise ConfigurationError(f"Payment provider {name.value} is not registered")
        return provider

    @property
    def paypal(self) -> Optional[PayPalProvider]:
        return self.providers.get(ProviderName.PAYPAL)

    def close(self) -> None:
        for provider in self.providers.values():
            provider.close()


def build_payment_registry(settings: Settings, http_client: Optional[httpx.Client] = None) -> PaymentProviderRegistry:
    """
    Instantiate every provider with its own circuit breaker.

    Providers without credentials are still registered; they raise
    ``ProviderNotConfigured`` when asked for a checkout.
    """
    providers = {
        name: provider_class(settings, http_client=http_client, breaker=create_breaker(name.value, settings))
        for name, provider_class in PROVIDER_CLASSES.items()
    }
    default = ProviderName.parse(settings.payments_provider)

    logger.info(
        "payment_registry_built",
        default=default.value,
        configured=[name.value for name, provider in providers.items() if provider.configured]
    )
    return PaymentProviderRegistry(providers, default)
