"""
KVEntry Model
Key/value rows backing orders, claims, idempotency records and list indexes
"""

from sqlalchemy import BigInteger, Column, Integer, String, JSON, Index
from vault_orders.database import Base


class KVEntry(Base):
    """
    One key/value pair with optional expiry.

    Keys are namespaced strings (``order:<id>``, ``claim:<id>``,
    ``idempotency:<key>``, ``orders:list``). ``version`` increases on every
    write and is the compare-and-set token for conditional updates.
    Timestamps are epoch milliseconds.
    """
    __tablename__ = "kv_entries"

    key = Column(String(255), primary_key=True)

    value = Column(JSON, nullable=False)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)
    expires_at = Column(BigInteger, nullable=True)
    # NULL means the entry never expires

    __table_args__ = (
        Index('ix_kv_entries_expires_at', 'expires_at'),
    )

    def __repr__(self):
        return f"<KVEntry(key='{self.key}', version={self.version}, expires_at={self.expires_at})>"
