"""
Webhook Event Parsing
Normalizes provider webhook payloads into payment events
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from vault_orders.errors import MalformedWebhookError
from vault_orders.models.provider import ProviderName


class EventKind(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    IGNORED = "ignored"


STRIPE_EVENTS = {
    "checkout.session.completed": EventKind.COMPLETED,
    "checkout.session.async_payment_succeeded": EventKind.COMPLETED,
    "checkout.session.expired": EventKind.FAILED,
    "checkout.session.async_payment_failed": EventKind.FAILED,
}

COINBASE_EVENTS = {
    "charge:confirmed": EventKind.COMPLETED,
    "charge:resolved": EventKind.COMPLETED,
    "charge:failed": EventKind.FAILED,
}

PAYPAL_EVENTS = {
    "PAYMENT.CAPTURE.COMPLETED": EventKind.COMPLETED,
    "PAYMENT.CAPTURE.DENIED": EventKind.FAILED,
}


@dataclass
class PaymentEvent:
    """Provider-independent view of one webhook delivery"""
    provider: ProviderName
    event_type: str
    kind: EventKind
    order_id: Optional[str] = None
    payment_id: Optional[str] = None

    @property
    def action(self) -> str:
        """Idempotency action name, e.g. ``stripe_payment_completed``"""
        return f"{self.provider.value}_payment_{self.kind.value}"


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _parse_stripe(event: dict):
    session = _as_dict(_as_dict(event.get("data")).get("object"))
    metadata = _as_dict(session.get("metadata"))
    order_id = metadata.get("orderId") or metadata.get("order_id") or session.get("client_reference_id")
    return event.get("type"), order_id, session.get("id")


def _parse_coinbase(body: dict):
    # Coinbase wraps the event: {"id": ..., "event": {"type": ..., "data": charge}}
    event = _as_dict(body.get("event")) or body
    charge = _as_dict(event.get("data"))
    metadata = _as_dict(charge.get("metadata"))
    order_id = metadata.get("order_id") or metadata.get("orderId")
    return event.get("type"), order_id, charge.get("id") or charge.get("code")


def _parse_paypal(event: dict):
    resource = _as_dict(event.get("resource"))
    order_id = resource.get("custom_id")
    if not order_id:
        units = resource.get("purchase_units")
        if isinstance(units, list) and units:
            order_id = _as_dict(units[0]).get("reference_id")
    return event.get("event_type"), order_id, resource.get("id")


PARSERS = {
    ProviderName.STRIPE: (_parse_stripe, STRIPE_EVENTS),
    ProviderName.COINBASE: (_parse_coinbase, COINBASE_EVENTS),
    ProviderName.PAYPAL: (_parse_paypal, PAYPAL_EVENTS),
}


def parse_payment_event(provider: ProviderName, raw_body: bytes) -> PaymentEvent:
    """
    Parse an authenticated webhook body.

    Event types the lifecycle does not act on come back as ``ignored``.

    Raises:
        MalformedWebhookError: Body is not a JSON object, has no event type,
            or a relevant event carries no order reference
    """
    try:
        body = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        raise MalformedWebhookError("Webhook body is not valid JSON", provider=provider.value)

    if not isinstance(body, dict):
        raise MalformedWebhookError("Webhook body is not a JSON object", provider=provider.value)

    parser, event_kinds = PARSERS[provider]
    event_type, order_id, payment_id = parser(body)

    if not isinstance(event_type, str) or not event_type:
        raise MalformedWebhookError("Webhook event has no type", provider=provider.value)

    kind = event_kinds.get(event_type, EventKind.IGNORED)
    if kind != EventKind.IGNORED and (not isinstance(order_id, str) or not order_id):
        raise MalformedWebhookError(
            f"{event_type} event has no order reference",
            provider=provider.value,
            eventType=event_type
        )

    return PaymentEvent(
        provider=provider,
        event_type=event_type,
        kind=kind,
        order_id=order_id if kind != EventKind.IGNORED else None,
        payment_id=str(payment_id) if payment_id is not None else None
    )
