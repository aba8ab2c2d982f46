"""
Claim record: the one-time right to mint for a paid wallet-less order
"""

from enum import Enum
from typing import Optional

from vault_orders.models.base import RecordModel


class ClaimStatus(str, Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"


class Claim(RecordModel):
    """
    Redeemable exactly once: ``active -> consumed``.

    Replay protection comes from this status, not from the token signature.
    """

    id: str
    order_id: str
    token: str
    status: ClaimStatus = ClaimStatus.ACTIVE
    created_at: int
    consumed_at: Optional[int] = None
    mint_signature: Optional[str] = None
    wallet_address: Optional[str] = None
