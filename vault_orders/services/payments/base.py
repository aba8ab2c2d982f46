"""
Payment Provider Interface
Uniform hosted-checkout contract over Stripe, Coinbase Commerce and PayPal
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import httpx
import pybreaker
import structlog

from vault_orders.config import Settings
from vault_orders.errors import ProviderNotConfigured, ProviderRequestFailed
from vault_orders.models.order import Order
from vault_orders.models.provider import ProviderName

logger = structlog.get_logger(__name__)

# ISO 4217 currencies without minor units
ZERO_DECIMAL_CURRENCIES = frozenset({"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"})


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a decimal amount to the integer minor units Stripe expects"""
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def error_message(response: httpx.Response) -> str:
    """Best-effort extraction of an error message from a provider response"""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if body.get("message"):
            return body["message"]
        if isinstance(error, str):
            return body.get("error_description") or error
    return response.reason_phrase


@dataclass
class CheckoutSession:
    """Hosted payment page created for one order"""
    redirect_url: str
    provider_charge_id: str
    provider: ProviderName


class PaymentProvider(ABC):
    """
    One hosted-checkout backend.

    Subclasses implement ``_create_checkout``; the base class checks
    credentials, runs the remote call through the provider's circuit breaker
    and normalizes failures into ``ProviderRequestFailed``.
    """

    name: ProviderName

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.Client] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None
    ):
        self.settings = settings
        self.breaker = breaker
        self._http_client = http_client
        self._owns_client = http_client is None
        self.logger = logger.bind(provider=self.name.value)

    @property
    @abstractmethod
    def configured(self) -> bool:
        """Whether the credentials needed to create a checkout are present"""

    @abstractmethod
    def _create_checkout(self, order: Order) -> CheckoutSession:
        """Call the provider and return the hosted checkout session"""

    def create_checkout(self, order: Order) -> CheckoutSession:
        """
        Create a hosted checkout for ``order``.

        Raises:
            ProviderNotConfigured: Credentials are missing
            ProviderRequestFailed: The provider rejected or failed the request,
                or its circuit breaker is open
        """
        if not self.configured:
            raise ProviderNotConfigured(
                f"{self.name.value} credentials not configured",
                provider=self.name.value
            )

        try:
            if self.breaker is not None:
                session = self.breaker.call(self._create_checkout, order)
            else:
                session = self._create_checkout(order)
        except pybreaker.CircuitBreakerError:
            self.logger.warning("checkout_circuit_open", order_id=order.id)
            raise ProviderRequestFailed(
                f"{self.name.value} is temporarily unavailable",
                provider=self.name.value
            )

        self.logger.info(
            "checkout_created",
            order_id=order.id,
            provider_charge_id=session.provider_charge_id
        )
        return session

    def success_url(self, order: Order) -> str:
        return f"{self.settings.base_url}/store/success?order={order.id}"

    def cancel_url(self, order: Order) -> str:
        return f"{self.settings.base_url}/store/cancel?order={order.id}"

    def description(self, order: Order) -> str:
        return order.description or self.settings.product_name

    @property
    def http(self) -> httpx.Client:
        """Lazy-init httpx client to avoid import-time side effects."""
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=self.settings.provider_timeout_seconds)
        return self._http_client

    def _request_failed(self, message: str) -> ProviderRequestFailed:
        self.logger.error("provider_request_failed", error=message)
        return ProviderRequestFailed(message, provider=self.name.value)

    def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None
