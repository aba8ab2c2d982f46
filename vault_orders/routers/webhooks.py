"""
Payment Webhook Router
Receives Stripe, Coinbase Commerce and PayPal notifications

Flow:
1. Read the raw body (signatures cover the exact bytes)
2. Authenticate the delivery for its provider
3. Parse it into a payment event; dead-letter bodies that can never be processed
4. Apply the event through the lifecycle coordinator (idempotent)
"""

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool
import structlog

from vault_orders.errors import MalformedWebhookError
from vault_orders.models.provider import ProviderName
from vault_orders.routers.dependencies import get_authenticator, get_coordinator
from vault_orders.services.webhook_events import parse_payment_event

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/{provider}")
async def receive_webhook(provider: str, request: Request):
    """
    Receive a payment provider webhook.

    Answers 200 for processed, duplicate, ignored and dead-lettered
    deliveries. Signature failures (401), missing configuration (500) and
    unknown orders (404) make the provider retry.
    """
    provider_name = ProviderName.parse(provider)
    raw_body = await request.body()
    coordinator = get_coordinator(request)

    await run_in_threadpool(get_authenticator(request).authenticate, provider_name, raw_body, request.headers)

    try:
        event = parse_payment_event(provider_name, raw_body)
    except MalformedWebhookError as e:
        await run_in_threadpool(coordinator.dead_letter_webhook, provider_name, raw_body, e.message)
        return {"received": True, "deadLettered": True}

    logger.info(
        "webhook_received",
        provider=provider_name.value,
        event_type=event.event_type,
        order_id=event.order_id
    )
    result = await run_in_threadpool(coordinator.handle_payment_event, event)
    return {"received": True, **result}
