"""
Sentry Error Tracking
Provides error tracking with order context for production debugging
"""

import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from vault_orders.config import Settings

logger = logging.getLogger(__name__)


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry SDK with FastAPI integration.

    If SENTRY_DSN is not configured, logs warning and returns False.
    This allows graceful degradation in development environments.
    """
    if settings.sentry_dsn is None:
        logger.warning("Sentry DSN not configured - error tracking disabled")
        return False

    environment = settings.sentry_environment or settings.environment
    try:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=environment,
            traces_sample_rate=0.1,  # 10% of requests traced
            integrations=[
                FastApiIntegration(),
            ],
        )
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")
        return False

    logger.info("Sentry initialized", extra={"environment": environment, "traces_sample_rate": 0.1})
    return True


def set_order_context(
    order_id: str,
    stage: str,
    provider: Optional[str] = None
) -> None:
    """
    Tag the current Sentry scope with the order being processed.

    Args:
        order_id: Order id
        stage: Lifecycle stage (e.g., "checkout", "payment_webhook", "claim")
        provider: Payment provider, if known
    """
    sentry_sdk.set_context("order", {
        "order_id": order_id,
        "stage": stage,
        "provider": provider or "none"
    })
    sentry_sdk.set_tag("order_id", order_id)
    sentry_sdk.set_tag("stage", stage)

    if provider:
        sentry_sdk.set_tag("payment_provider", provider)
