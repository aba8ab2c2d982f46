"""
Order record and its status machine
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from vault_orders.models.base import RecordModel


class OrderStatus(str, Enum):
    """Lifecycle states of a purchase attempt"""
    PENDING = "pending"
    PAID = "paid"
    MINTED = "minted"
    COMPLETED = "completed"
    FAILED = "failed"


# Forward-only transitions; anything not listed is rejected
ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.COMPLETED},
    OrderStatus.PAID: {OrderStatus.MINTED, OrderStatus.COMPLETED},
    OrderStatus.MINTED: set(),
    OrderStatus.COMPLETED: set(),
    OrderStatus.FAILED: set(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.MINTED, OrderStatus.COMPLETED, OrderStatus.FAILED})

# States reached once the provider confirmed the payment
SETTLED_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.MINTED, OrderStatus.COMPLETED})


class Order(RecordModel):
    """
    One purchase attempt.

    ``wallet_address`` is absent when the buyer had no wallet at purchase
    time; such orders carry a claim token instead. ``fallback_provider`` is
    set once the single allowed checkout fallback has been used.
    """

    id: str
    wallet_address: Optional[str] = None
    amount: Decimal
    currency: str
    description: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    payment_provider: str
    payment_id: str = ""
    claim_token: Optional[str] = None
    claim_token_expiry: Optional[int] = None
    mint_tx_hash: Optional[str] = None
    fallback_provider: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: int
    updated_at: int

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def summary(self) -> dict:
        """Buyer-facing subset of the order"""
        return {
            "id": self.id,
            "status": self.status.value,
            "amount": str(self.amount),
            "currency": self.currency,
            "createdAt": self.created_at,
            "mintTxHash": self.mint_tx_hash,
        }
