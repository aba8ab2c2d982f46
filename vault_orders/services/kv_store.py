"""
Key/Value Store
SQLAlchemy-backed key/value storage with expiry, atomic inserts and
compare-and-set updates
"""

from dataclasses import dataclass
from typing import Any, List, Optional
import structlog
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from vault_orders.models.kv_entry import KVEntry
from vault_orders.services.clock import Clock, now_ms

logger = structlog.get_logger(__name__)

# Passed as ttl_ms to compare_and_set to leave the current expiry untouched
KEEP_TTL = object()


@dataclass
class KVItem:
    """Snapshot of one live entry"""
    key: str
    value: Any
    version: int
    expires_at: Optional[int]


class KVStore:
    """
    Key/value storage on the ``kv_entries`` table.

    Every call runs in its own session and transaction. Expired rows are
    invisible to reads and are replaced by ``set_if_absent``; they are
    physically removed by ``purge_expired``.

    Concurrency primitives:
    - ``set_if_absent``: INSERT ... ON CONFLICT DO NOTHING on the primary key
    - ``compare_and_set``: UPDATE ... WHERE version = expected
    """

    def __init__(self, session_factory: sessionmaker, clock: Clock = now_ms):
        """
        Initialize the store.

        Args:
            session_factory: SQLAlchemy sessionmaker (not session - creates independent transactions)
            clock: Callable returning the current time in epoch milliseconds
        """
        self.session_factory = session_factory
        self.clock = clock
        self.logger = logger.bind(service="kv_store")

    def _expires_at(self, now: int, ttl_ms: Optional[int]) -> Optional[int]:
        return None if ttl_ms is None else now + ttl_ms

    @staticmethod
    def _live(now: int):
        return or_(KVEntry.expires_at.is_(None), KVEntry.expires_at > now)

    @staticmethod
    def _to_item(entry: KVEntry) -> KVItem:
        return KVItem(
            key=entry.key,
            value=entry.value,
            version=entry.version,
            expires_at=entry.expires_at
        )

    def get(self, key: str) -> Optional[KVItem]:
        """Return the live entry for ``key`` or None"""
        session: Session = self.session_factory()
        try:
            entry = session.query(KVEntry).filter(
                KVEntry.key == key,
                self._live(self.clock())
            ).first()
            return self._to_item(entry) if entry else None
        finally:
            session.close()

    def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> int:
        """
        Unconditionally write ``value`` under ``key``.

        Returns:
            The new version of the entry
        """
        session: Session = self.session_factory()
        try:
            now = self.clock()
            entry = session.get(KVEntry, key)

            if entry is None:
                entry = KVEntry(
                    key=key,
                    value=value,
                    version=1,
                    created_at=now,
                    updated_at=now,
                    expires_at=self._expires_at(now, ttl_ms)
                )
                session.add(entry)
            else:
                if entry.expires_at is not None and entry.expires_at <= now:
                    entry.created_at = now
                entry.value = value
                entry.version = entry.version + 1
                entry.updated_at = now
                entry.expires_at = self._expires_at(now, ttl_ms)

            version = entry.version
            session.commit()
            return version

        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def set_if_absent(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> bool:
        """
        Atomically create ``key`` unless a live entry already exists.

        Returns:
            True if this call created the entry, False if it was already present
        """
        session: Session = self.session_factory()
        try:
            now = self.clock()
            row = dict(
                key=key,
                value=value,
                version=1,
                created_at=now,
                updated_at=now,
                expires_at=self._expires_at(now, ttl_ms)
            )

            # An expired entry no longer blocks the key
            session.query(KVEntry).filter(
                KVEntry.key == key,
                KVEntry.expires_at.isnot(None),
                KVEntry.expires_at <= now
            ).delete(synchronize_session=False)

            dialect = session.get_bind().dialect.name
            if dialect == "postgresql":
                stmt = pg_insert(KVEntry).values(**row).on_conflict_do_nothing(index_elements=['key'])
            elif dialect == "sqlite":
                stmt = sqlite_insert(KVEntry).values(**row).on_conflict_do_nothing(index_elements=['key'])
            else:
                stmt = None

            if stmt is not None:
                inserted = session.execute(stmt).rowcount > 0
                session.commit()
            else:
                try:
                    session.add(KVEntry(**row))
                    session.commit()
                    inserted = True
                except IntegrityError:
                    session.rollback()
                    inserted = False

            if not inserted:
                self.logger.debug("kv_key_already_exists", key=key)
            return inserted

        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def compare_and_set(self, key: str, expected_version: int, value: Any, ttl_ms=KEEP_TTL) -> bool:
        """
        Replace the value only if the live entry is still at ``expected_version``.

        Args:
            key: Entry key
            expected_version: Version observed by the caller's read
            value: New value
            ttl_ms: New time-to-live in milliseconds, None for no expiry,
                or KEEP_TTL to keep the current expiry

        Returns:
            True if exactly this write won, False if the entry changed or vanished
        """
        session: Session = self.session_factory()
        try:
            now = self.clock()
            updates = {
                KVEntry.value: value,
                KVEntry.version: KVEntry.version + 1,
                KVEntry.updated_at: now,
            }
            if ttl_ms is not KEEP_TTL:
                updates[KVEntry.expires_at] = self._expires_at(now, ttl_ms)

            updated = session.query(KVEntry).filter(
                KVEntry.key == key,
                KVEntry.version == expected_version,
                self._live(now)
            ).update(updates, synchronize_session=False)
            session.commit()

            if updated != 1:
                self.logger.info("kv_compare_and_set_lost", key=key, expected_version=expected_version)
            return updated == 1

        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete(self, key: str, expected_version: Optional[int] = None) -> bool:
        """Delete ``key``; with ``expected_version`` only while the entry is still at that version"""
        session: Session = self.session_factory()
        try:
            query = session.query(KVEntry).filter(KVEntry.key == key)
            if expected_version is not None:
                query = query.filter(KVEntry.version == expected_version)
            deleted = query.delete(synchronize_session=False)
            session.commit()
            return deleted > 0
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def scan(self, prefix: str) -> List[KVItem]:
        """All live entries whose key starts with ``prefix``, ordered by key"""
        session: Session = self.session_factory()
        try:
            entries = session.query(KVEntry).filter(
                KVEntry.key.startswith(prefix, autoescape=True),
                self._live(self.clock())
            ).order_by(KVEntry.key.asc()).all()
            return [self._to_item(entry) for entry in entries]
        finally:
            session.close()

    def push_bounded(self, key: str, item: Any, limit: int, max_attempts: int = 5) -> bool:
        """
        Prepend ``item`` to the JSON list under ``key``, keeping at most ``limit`` entries.

        Lists are best-effort indexes: a push that keeps losing the
        compare-and-set race is logged and dropped.
        """
        for _ in range(max_attempts):
            current = self.get(key)
            if current is None:
                if self.set_if_absent(key, [item]):
                    return True
                continue

            items = [item] + [existing for existing in current.value if existing != item]
            if self.compare_and_set(key, current.version, items[:limit]):
                return True

        self.logger.warning("kv_list_push_abandoned", key=key, attempts=max_attempts)
        return False

    def list_range(self, key: str, start: int = 0, stop: Optional[int] = None) -> list:
        """Slice ``[start:stop]`` of the JSON list under ``key`` (empty if absent)"""
        current = self.get(key)
        if current is None:
            return []
        return list(current.value)[start:stop]

    def purge_expired(self) -> int:
        """
        Delete all expired entries.

        Called by the scheduler to prevent unbounded table growth.

        Returns:
            Number of entries deleted
        """
        session: Session = self.session_factory()
        try:
            deleted_count = session.query(KVEntry).filter(
                KVEntry.expires_at.isnot(None),
                KVEntry.expires_at <= self.clock()
            ).delete(synchronize_session=False)
            session.commit()

            self.logger.info("kv_purge_complete", deleted_count=deleted_count)
            return deleted_count

        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
