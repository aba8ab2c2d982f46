"""
Idempotency Service
Collapses repeated deliveries of one logical operation into a single application
"""

import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple
import structlog

from vault_orders.errors import ConflictError
from vault_orders.models.idempotency_record import IdempotencyRecord
from vault_orders.services.kv_store import KVStore

logger = structlog.get_logger(__name__)

IDEMPOTENCY_PREFIX = "idempotency:"


def generate_idempotency_key(action: str, order_id: str) -> str:
    """
    Generate the idempotency key for an operation.

    Format: {action}:{order_id}

    The key deliberately contains no timestamp: two deliveries of the same
    event must map to the same key.

    Args:
        action: Logical operation (e.g., 'stripe_payment_completed')
        order_id: Order the operation applies to

    Returns:
        Idempotency key string
    """
    return f"{action}:{order_id}"


@dataclass
class IdempotentResult:
    value: Any
    cached: bool


class IdempotencyService:
    """
    KV-backed idempotency guard.

    A key is first claimed with an atomic set-if-absent lease
    (``processed=False``, short TTL) and, once the operation succeeded,
    replaced by the completed record (``processed=True``) kept for
    ``ttl_seconds``.
    """

    def __init__(self, store: KVStore, ttl_seconds: int = 86400, lease_seconds: int = 60):
        """
        Initialize idempotency service.

        Args:
            store: KV store holding ``idempotency:<key>`` entries
            ttl_seconds: Lifetime of completed records (default: 24 hours)
            lease_seconds: Lifetime of the in-flight marker
        """
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.lease_seconds = lease_seconds
        self.logger = logger.bind(service="idempotency")

    def _entry_key(self, key: str) -> str:
        return f"{IDEMPOTENCY_PREFIX}{key}"

    def check(self, key: str) -> Optional[IdempotencyRecord]:
        """
        Return the completed record for ``key``, or None.

        An in-flight lease is not a completed record and yields None.
        """
        item = self.store.get(self._entry_key(key))
        if item is None:
            return None

        record = IdempotencyRecord.from_record(item.value)
        if not record.processed:
            return None

        self.logger.info("idempotency_key_found", key=key, created_at=record.created_at)
        return record

    def record(self, key: str, result: Any) -> IdempotencyRecord:
        """Mark ``key`` as processed with its cached result"""
        record = IdempotencyRecord(
            key=key,
            processed=True,
            result=result,
            created_at=self.store.clock()
        )
        self.store.set(self._entry_key(key), record.to_record(), ttl_ms=self.ttl_seconds * 1000)
        self.logger.info("idempotency_key_stored", key=key, ttl_seconds=self.ttl_seconds)
        return record

    def begin(self, key: str) -> Optional[IdempotencyRecord]:
        """
        Atomically claim ``key`` for processing.

        Returns:
            None if the caller now holds the lease and must run the
            operation; the completed record if the operation already ran

        Raises:
            ConflictError: Another delivery currently holds the lease
        """
        existing, _ = self._acquire(key)
        return existing

    def _acquire(self, key: str) -> Tuple[Optional[IdempotencyRecord], Optional[str]]:
        """``(completed record, None)`` for duplicates, ``(None, lease_id)`` once the lease is held"""
        lease = IdempotencyRecord(
            key=key,
            processed=False,
            result=None,
            lease_id=uuid.uuid4().hex,
            created_at=self.store.clock()
        )
        entry_key = self._entry_key(key)

        # Retry once when the blocking entry expires between insert and read
        for _ in range(2):
            if self.store.set_if_absent(entry_key, lease.to_record(), ttl_ms=self.lease_seconds * 1000):
                self.logger.debug("idempotency_lease_acquired", key=key, lease_id=lease.lease_id)
                return None, lease.lease_id

            item = self.store.get(entry_key)
            if item is None:
                continue

            existing = IdempotencyRecord.from_record(item.value)
            if existing.processed:
                self.logger.info("idempotency_duplicate", key=key)
                return existing, None

            self.logger.warning("idempotency_operation_in_flight", key=key)
            raise ConflictError("Operation already in progress", idempotencyKey=key)

        raise ConflictError("Operation already in progress", idempotencyKey=key)

    def release(self, key: str, lease_id: Optional[str] = None) -> bool:
        """
        Drop an in-flight lease so a later delivery can retry.

        With ``lease_id`` only that lease is dropped; a lease taken over by
        another delivery after this one expired is left alone.

        Returns:
            True if a lease was deleted
        """
        entry_key = self._entry_key(key)
        item = self.store.get(entry_key)
        if item is None:
            return False

        current = IdempotencyRecord.from_record(item.value)
        if current.processed:
            return False
        if lease_id is not None and current.lease_id != lease_id:
            self.logger.warning("idempotency_lease_taken_over", key=key, lease_id=lease_id)
            return False

        released = self.store.delete(entry_key, expected_version=item.version)
        if released:
            self.logger.info("idempotency_lease_released", key=key)
        return released

    def run(self, key: str, operation: Callable[[], Any]) -> IdempotentResult:
        """
        Apply ``operation`` at most once for ``key``.

        The operation's return value must be JSON-serializable; it is the
        cached result returned to later duplicates.
        """
        existing, lease_id = self._acquire(key)
        if existing is not None:
            return IdempotentResult(value=existing.result, cached=True)

        try:
            value = operation()
        except Exception:
            self.release(key, lease_id)
            raise

        self.record(key, value)
        return IdempotentResult(value=value, cached=False)

    def cleanup_expired(self) -> int:
        """
        Delete expired idempotency records (and any other expired KV entries).

        Called by the scheduler to prevent unbounded table growth.
        """
        return self.store.purge_expired()
