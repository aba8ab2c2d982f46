"""
IdempotencyRecord Model
Marks a logical operation as applied and caches its response
"""

from typing import Any, Optional

from vault_orders.models.base import RecordModel


class IdempotencyRecord(RecordModel):
    """
    Idempotency marker for one logical operation.

    ``processed=False`` is an in-flight lease held by the delivery currently
    applying the operation, identified by ``lease_id``; ``processed=True``
    means the side effects were applied and ``result`` is the response to
    replay for duplicates.
    """

    key: str
    processed: bool = True
    result: Optional[Any] = None
    lease_id: Optional[str] = None
    created_at: int
