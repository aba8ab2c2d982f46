"""
Order/Claim Repository
Persists orders, claims and dead-lettered webhooks in the KV store
"""

import hashlib
import hmac
from typing import Callable, List, Optional
import structlog

from vault_orders.errors import ConflictError, NotFoundError
from vault_orders.models.claim import Claim, ClaimStatus
from vault_orders.models.dead_letter import DeadLetteredWebhook
from vault_orders.models.order import Order, OrderStatus
from vault_orders.services.kv_store import KVStore

logger = structlog.get_logger(__name__)

ORDER_PREFIX = "order:"
ORDERS_LIST = "orders:list"
CLAIM_PREFIX = "claim:"
CLAIM_TOKEN_PREFIX = "claim_token:"
DEAD_LETTER_PREFIX = "dead_letter:"
DEAD_LETTERS_LIST = "dead_letters:list"

DEAD_LETTERS_LIMIT = 500


def order_key(order_id: str) -> str:
    return f"{ORDER_PREFIX}{order_id}"


def claim_key(claim_id: str) -> str:
    return f"{CLAIM_PREFIX}{claim_id}"


def claim_token_key(token: str) -> str:
    # Tokens are long; index by digest to stay within the key column
    return f"{CLAIM_TOKEN_PREFIX}{hashlib.sha256(token.encode('utf-8')).hexdigest()}"


class OrderClaimRepository:
    """
    Repository for ``Order`` and ``Claim`` records.

    The ``order:<id>`` record is authoritative. ``orders:list`` is a
    best-effort, newest-first index capped at ``orders_index_limit`` ids for
    administrative listing. Claims are indexed by token digest so lookups do
    not scan the claim namespace.
    """

    def __init__(self, store: KVStore, orders_index_limit: int = 1000, update_attempts: int = 5):
        self.store = store
        self.orders_index_limit = orders_index_limit
        self.update_attempts = update_attempts
        self.logger = logger.bind(service="repository")

    # --- Orders ---

    def store_order(self, order: Order) -> None:
        self.store.set(order_key(order.id), order.to_record())
        self.store.push_bounded(ORDERS_LIST, order.id, self.orders_index_limit)
        self.logger.info("order_stored", order_id=order.id, status=order.status.value)

    def get_order(self, order_id: str) -> Optional[Order]:
        item = self.store.get(order_key(order_id))
        return Order.from_record(item.value) if item else None

    def update_order(
        self,
        order_id: str,
        updates: dict,
        expected_status: Optional[OrderStatus] = None,
        guard: Optional[Callable[[Order], None]] = None
    ) -> Order:
        """
        Merge ``updates`` into the stored order and bump ``updated_at``.

        The merge is applied to a fresh read and written with
        compare-and-set, retrying when another writer got in first.

        Args:
            order_id: Order to update
            updates: Field values keyed by snake_case field name
            expected_status: When given, the write only happens while the
                order is still in this status
            guard: Called with the freshly read order before every write
                attempt; raise to abort the update

        Returns:
            The updated order

        Raises:
            NotFoundError: If the order does not exist
            ConflictError: If the order left ``expected_status``, the status
                change is not a forward transition, or the write kept losing races
        """
        key = order_key(order_id)

        for _ in range(self.update_attempts):
            item = self.store.get(key)
            if item is None:
                raise NotFoundError(f"Order {order_id} not found", orderId=order_id)

            current = Order.from_record(item.value)
            if expected_status is not None and current.status != expected_status:
                raise ConflictError(
                    f"Order {order_id} is {current.status.value}, expected {expected_status.value}",
                    orderId=order_id,
                    status=current.status.value
                )
            if guard is not None:
                guard(current)

            new_status = updates.get("status")
            if new_status is not None and new_status != current.status and not current.can_transition_to(new_status):
                raise ConflictError(
                    f"Order {order_id} cannot move from {current.status.value} to {new_status.value}",
                    orderId=order_id,
                    status=current.status.value
                )

            updated = current.model_copy(update={**updates, "updated_at": self.store.clock()})
            if self.store.compare_and_set(key, item.version, updated.to_record()):
                self.logger.info(
                    "order_updated",
                    order_id=order_id,
                    status=updated.status.value,
                    fields=sorted(updates)
                )
                return updated

        raise ConflictError(f"Order {order_id} is being modified concurrently", orderId=order_id)

    def get_recent_orders(self, limit: int = 50) -> List[Order]:
        orders = []
        for order_id in self.store.list_range(ORDERS_LIST, 0, limit):
            order = self.get_order(order_id)
            if order:
                orders.append(order)
        return orders

    # --- Claims ---

    def store_claim(self, claim: Claim, ttl_ms: Optional[int] = None) -> None:
        """Persist a claim and its token index, both expiring with the token"""
        self.store.set(claim_key(claim.id), claim.to_record(), ttl_ms=ttl_ms)
        self.store.set(claim_token_key(claim.token), claim.id, ttl_ms=ttl_ms)
        self.logger.info("claim_stored", claim_id=claim.id, order_id=claim.order_id)

    def get_claim(self, claim_id: str) -> Optional[Claim]:
        item = self.store.get(claim_key(claim_id))
        return Claim.from_record(item.value) if item else None

    def get_claim_by_token(self, token: str) -> Optional[Claim]:
        index = self.store.get(claim_token_key(token))
        if index is None:
            return None

        claim = self.get_claim(index.value)
        if claim is None or not hmac.compare_digest(claim.token, token):
            return None
        return claim

    def consume_claim(
        self,
        claim_id: str,
        mint_signature: str,
        wallet_address: Optional[str] = None
    ) -> Optional[Claim]:
        """
        Atomically move a claim from ``active`` to ``consumed``.

        Returns:
            The consumed claim, or None if the claim was not active or a
            concurrent redemption won the compare-and-set

        Raises:
            NotFoundError: If the claim does not exist (or expired)
        """
        key = claim_key(claim_id)
        item = self.store.get(key)
        if item is None:
            raise NotFoundError(f"Claim {claim_id} not found", claimId=claim_id)

        claim = Claim.from_record(item.value)
        if claim.status != ClaimStatus.ACTIVE:
            return None

        consumed = claim.model_copy(update={
            "status": ClaimStatus.CONSUMED,
            "consumed_at": self.store.clock(),
            "mint_signature": mint_signature,
            "wallet_address": wallet_address,
        })
        if not self.store.compare_and_set(key, item.version, consumed.to_record()):
            self.logger.warning("claim_consume_race_lost", claim_id=claim_id)
            return None

        self.logger.info("claim_consumed", claim_id=claim_id, order_id=claim.order_id)
        return consumed

    def list_claims(self) -> List[Claim]:
        return [Claim.from_record(item.value) for item in self.store.scan(CLAIM_PREFIX)]

    # --- Dead letters ---

    def store_dead_letter(self, dead_letter: DeadLetteredWebhook) -> None:
        self.store.set(f"{DEAD_LETTER_PREFIX}{dead_letter.id}", dead_letter.to_record())
        self.store.push_bounded(DEAD_LETTERS_LIST, dead_letter.id, DEAD_LETTERS_LIMIT)

    def list_dead_letters(self, limit: int = 50) -> List[DeadLetteredWebhook]:
        dead_letters = []
        for dead_letter_id in self.store.list_range(DEAD_LETTERS_LIST, 0, limit):
            item = self.store.get(f"{DEAD_LETTER_PREFIX}{dead_letter_id}")
            if item:
                dead_letters.append(DeadLetteredWebhook.from_record(item.value))
        return dead_letters
