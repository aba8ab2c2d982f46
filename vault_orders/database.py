"""
Database Configuration and Session Management
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
import logging

logger = logging.getLogger(__name__)

# Base class for all models
Base = declarative_base()


def normalize_database_url(database_url: str) -> str:
    """Use the psycopg3 driver for plain postgresql:// URLs"""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return database_url


def create_db_engine(database_url: str) -> Engine:
    """
    Create the SQLAlchemy engine for the configured database.

    SQLite is supported for development and tests; an in-memory SQLite URL
    shares a single connection so every session sees the same database.
    """
    database_url = normalize_database_url(database_url)

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        logger.info("Connecting to SQLite database...")
        return create_engine(database_url, **kwargs)

    logger.info("Connecting to database...")
    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using them
        pool_size=5,
        max_overflow=10
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to ``engine``"""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """
    Create missing tables.

    Production databases are migrated with Alembic; this keeps development
    and test databases usable without running migrations.
    """
    from vault_orders.models.kv_entry import KVEntry  # noqa: F401  (registers table)

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured")
