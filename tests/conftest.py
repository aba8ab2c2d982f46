"""
Shared fixtures: in-memory SQLite store, pinned clock, test settings
"""

from decimal import Decimal

import pytest

from vault_orders.config import Settings
from vault_orders.database import create_db_engine, create_session_factory, init_db
from vault_orders.errors import ProviderRequestFailed
from vault_orders.models.order import Order, OrderStatus
from vault_orders.models.provider import ProviderName
from vault_orders.services.claim_tokens import ClaimTokenService
from vault_orders.services.idempotency import IdempotencyService
from vault_orders.services.kv_store import KVStore
from vault_orders.services.order_lifecycle import OrderLifecycleCoordinator
from vault_orders.services.payments import CheckoutSession, PaymentProvider, PaymentProviderRegistry
from vault_orders.services.repository import OrderClaimRepository

START_MS = 1_760_000_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to"""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeProvider(PaymentProvider):
    """Provider that records calls instead of talking to a payment API"""

    def __init__(self, settings, name: ProviderName, fail: bool = False):
        self.name = name
        super().__init__(settings)
        self.fail = fail
        self.calls = []

    @property
    def configured(self) -> bool:
        return True

    def _create_checkout(self, order):
        self.calls.append(order.id)
        if self.fail:
            raise ProviderRequestFailed(f"{self.name.value} is down", provider=self.name.value)
        return CheckoutSession(
            redirect_url=f"https://pay.test/{self.name.value}/{order.id}",
            provider_charge_id=f"{self.name.value}_charge_{order.id}",
            provider=self.name
        )


def make_settings(**overrides) -> Settings:
    values = dict(
        environment="testing",
        database_url="sqlite://",
        base_url="https://vault.test",
        claim_signing_secret="claim-signing-secret",
        stripe_webhook_secret="whsec_test",
        coinbase_webhook_secret="coinbase-webhook-secret",
        admin_secret_key="admin-secret",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_order(order_id: str = "order-1", now: int = START_MS, **fields) -> Order:
    values = dict(
        id=order_id,
        amount=Decimal("33.33"),
        currency="USD",
        status=OrderStatus.PENDING,
        payment_provider="stripe",
        created_at=now,
        updated_at=now,
    )
    values.update(fields)
    return Order(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine, clock):
    return KVStore(create_session_factory(engine), clock=clock)


@pytest.fixture
def repository(store):
    return OrderClaimRepository(store, orders_index_limit=1000)


@pytest.fixture
def tokens(clock):
    return ClaimTokenService("claim-signing-secret", "https://vault.test", clock=clock)


@pytest.fixture
def providers(settings):
    return {name: FakeProvider(settings, name) for name in ProviderName}


@pytest.fixture
def coordinator(repository, store, tokens, providers, settings, clock):
    return OrderLifecycleCoordinator(
        repository=repository,
        idempotency=IdempotencyService(store, ttl_seconds=86400, lease_seconds=60),
        tokens=tokens,
        payments=PaymentProviderRegistry(providers, ProviderName.STRIPE),
        settings=settings,
        clock=clock
    )
