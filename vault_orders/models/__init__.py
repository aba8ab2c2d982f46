"""
Data Models
"""

from vault_orders.models.kv_entry import KVEntry
from vault_orders.models.order import Order, OrderStatus
from vault_orders.models.claim import Claim, ClaimStatus
from vault_orders.models.idempotency_record import IdempotencyRecord
from vault_orders.models.dead_letter import DeadLetteredWebhook
from vault_orders.models.provider import ProviderName

__all__ = [
    "KVEntry",
    "Order",
    "OrderStatus",
    "Claim",
    "ClaimStatus",
    "IdempotencyRecord",
    "DeadLetteredWebhook",
    "ProviderName",
]
