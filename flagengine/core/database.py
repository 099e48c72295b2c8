"""
Database connection and session management

Provides:
- Engine and session factory with pooling appropriate to the configured backend
- Transaction context manager: one commit or one rollback per unit of work
- Schema bootstrap and a readiness probe
"""

from contextlib import contextmanager
from typing import Generator

import structlog
from flagengine.core.config import settings
from flagengine.core.resilience import db_breaker, retry_database_operation
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = structlog.get_logger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create an engine for ``database_url``.

    SQLite (local development and tests) gets a single shared connection for
    in-memory databases; every other backend gets a tuned connection pool.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        echo_pool=settings.DEBUG,
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
Base = declarative_base()


@contextmanager
def transaction(db: Session) -> Generator[Session, None, None]:
    """
    Synchronous transaction context manager with automatic commit/rollback.

    Usage:
        with transaction(db) as session:
            session.add(new_object)
            # Commits automatically on success, rolls back on exception

    Args:
        db: SQLAlchemy Session instance

    Yields:
        The same session for use within the transaction

    Raises:
        Any exception raised within the context (after rollback)
    """
    try:
        yield db
        db.commit()
        logger.debug("Transaction committed successfully")
    except Exception as e:
        db.rollback()
        logger.warning(
            "Transaction rolled back due to error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise


def init_db(bind: Engine = None) -> None:
    """Create all tables that do not exist yet."""
    # Models must be imported so their tables are registered on Base.metadata
    from flagengine import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("database_schema_ready")


@retry_database_operation()
@db_breaker
def _ping_database(bind: Engine) -> None:
    with bind.connect() as conn:
        conn.execute(text("SELECT 1"))


def check_database_connection(bind: Engine = None) -> bool:
    """Check if the database is accessible with retry and circuit breaker"""
    try:
        _ping_database(bind or engine)
        return True
    except Exception as e:
        logger.warning("database_check_failed", error=str(e))
        return False
