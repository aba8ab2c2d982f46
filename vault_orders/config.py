"""
Application Configuration
"""

from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    database_url: str = "sqlite:///./vault_orders.db"

    # Environment
    environment: str = "development"

    # Public URL used for checkout redirects and claim links
    base_url: str = "http://localhost:3000"

    # Product (pricing rules live outside this service)
    product_name: str = "ChaosKey333 Vault Relic"
    product_price: Decimal = Decimal("33.33")
    product_currency: str = "USD"

    # Payment provider selection
    payments_provider: str = "stripe"  # stripe | coinbase | paypal

    # Stripe
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_webhook_tolerance_seconds: int = 300  # 0 disables the timestamp check

    # Coinbase Commerce
    coinbase_commerce_api_key: Optional[str] = None
    coinbase_webhook_secret: Optional[str] = None

    # PayPal
    paypal_client_id: Optional[str] = None
    paypal_secret: Optional[str] = None
    paypal_mode: str = "sandbox"  # sandbox | live
    paypal_webhook_id: Optional[str] = None
    paypal_webhook_secret: Optional[str] = None
    # HMAC over the body is NOT PayPal's verification scheme; development only
    paypal_allow_insecure_hmac: bool = False

    provider_timeout_seconds: float = 15.0

    # Claim tokens
    claim_signing_secret: Optional[str] = None
    claim_token_ttl_hours: int = 168  # 7 days
    mint_signature_ttl_minutes: int = 15

    # Idempotency
    idempotency_ttl_seconds: int = 86400  # 24 hours
    idempotency_lease_seconds: int = 60  # in-flight marker for concurrent deliveries

    # Admin listing
    orders_index_limit: int = 1000
    admin_secret_key: Optional[str] = None

    # Circuit Breaker Configuration
    circuit_breaker_fail_max: int = 5  # Consecutive failures before opening circuit
    circuit_breaker_reset_timeout: int = 60  # Seconds before auto-recovery attempt

    # Scheduler
    kv_purge_interval_minutes: int = 60

    # Sentry Error Tracking
    sentry_dsn: Optional[str] = None  # Sentry project DSN
    sentry_environment: Optional[str] = None  # Defaults to environment setting

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
