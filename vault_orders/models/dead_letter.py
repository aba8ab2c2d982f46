"""
DeadLetteredWebhook Model
Authenticated webhook deliveries that can never be processed
"""

from vault_orders.models.base import RecordModel


class DeadLetteredWebhook(RecordModel):
    """
    Parked webhook body.

    Acknowledging these stops the provider from retrying a permanently
    malformed event forever; operators inspect them via the admin API.
    """

    id: str
    provider: str
    reason: str
    raw_body: str
    received_at: int
