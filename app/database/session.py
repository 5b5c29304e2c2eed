"""
============================================================================
Veritas Protocol v1.0.0
Database Session - SQLAlchemy Engine & Session Management
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: DATABASE_URL (PostgreSQL or SQLite); unset means the
                   validation layer runs with in-memory stores
Side Effects: Database connections

SOVEREIGN MANDATE:
- Importing this module never connects; the engine is built on first use
- Connection pooling for server databases
- Schema bootstrap is idempotent (CREATE TABLE IF NOT EXISTS)

TABLES:
- veritas_source_reliability: current trust score per provider
- veritas_source_reliability_history: applied adjustments (audit)
- veritas_alert_reviews: fatal alerts awaiting human review

============================================================================
"""

import logging
import os
import threading
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

logger = logging.getLogger(__name__)


# ============================================================================
# DATABASE CONFIGURATION
# ============================================================================

def get_database_url() -> Optional[str]:
    """
    Database URL from the DATABASE_URL environment variable.

    Returns:
        str URL, or None when persistence is not configured
    """
    url = os.getenv("DATABASE_URL", "").strip()
    return url or None


def is_database_configured() -> bool:
    return get_database_url() is not None


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


# ============================================================================
# SQLALCHEMY ENGINE (lazy)
# ============================================================================

_engine = None  # type: Optional[Engine]
_session_factory = None  # type: Optional[sessionmaker]
_engine_lock = threading.Lock()


def create_database_engine(url: str) -> Engine:
    """
    Build an engine for the given URL.

    SQLite in-memory URLs share one connection (StaticPool) so every
    session sees the same database; server databases get a QueuePool.
    """
    echo = os.getenv("DB_ECHO", "false").lower() == "true"

    if _is_sqlite(url):
        kwargs = {"connect_args": {"check_same_thread": False}, "echo": echo}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=echo,
    )

    @event.listens_for(engine, "connect")
    def set_timezone(dbapi_connection, connection_record):
        """All timestamps are UTC."""
        cursor = dbapi_connection.cursor()
        cursor.execute("SET timezone TO 'UTC'")
        cursor.close()

    return engine


def get_engine() -> Optional[Engine]:
    """Engine for DATABASE_URL, created on first call; None if unset."""
    global _engine, _session_factory

    url = get_database_url()
    if url is None:
        return None

    with _engine_lock:
        if _engine is None:
            _engine = create_database_engine(url)
            _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
            logger.info(
                f"[VERITAS-DB] Engine created | "
                f"dialect={_engine.dialect.name}"
            )
        return _engine


def get_session_factory() -> Optional[sessionmaker]:
    """sessionmaker bound to the lazy engine; None if persistence is off."""
    if get_engine() is None:
        return None
    return _session_factory


def reset_engine() -> None:
    """Dispose the engine (tests, or after DATABASE_URL changes)."""
    global _engine, _session_factory
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _session_factory = None


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================

def get_db() -> Generator[Optional[Session], None, None]:
    """
    FastAPI dependency for database session injection.

    Yields None when no database is configured.

    Usage:
        @router.get("/health")
        async def health(db: Optional[Session] = Depends(get_db)):
            ...
    """
    factory = get_session_factory()
    if factory is None:
        yield None
        return

    db = factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# ============================================================================
# SCHEMA BOOTSTRAP
# ============================================================================

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS veritas_source_reliability (
        source_name VARCHAR(128) PRIMARY KEY,
        reliability_score NUMERIC(6, 2) NOT NULL,
        trust_weight NUMERIC(6, 4) NOT NULL,
        total_validations INTEGER NOT NULL DEFAULT 0,
        agreements INTEGER NOT NULL DEFAULT 0,
        disagreements INTEGER NOT NULL DEFAULT 0,
        last_updated TIMESTAMP WITH TIME ZONE NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS veritas_source_reliability_history (
        source_name VARCHAR(128) NOT NULL,
        agreed BOOLEAN NOT NULL,
        step NUMERIC(6, 2) NOT NULL,
        score_before NUMERIC(6, 2) NOT NULL,
        score_after NUMERIC(6, 2) NOT NULL,
        correlation_id VARCHAR(64),
        recorded_at TIMESTAMP WITH TIME ZONE NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_veritas_reliability_history_source
        ON veritas_source_reliability_history (source_name, recorded_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS veritas_alert_reviews (
        alert_id VARCHAR(64) PRIMARY KEY,
        symbol VARCHAR(32) NOT NULL,
        severity VARCHAR(16) NOT NULL,
        domain VARCHAR(16) NOT NULL,
        message TEXT NOT NULL,
        affected_sources TEXT NOT NULL,
        recommendation TEXT,
        status VARCHAR(32) NOT NULL,
        correlation_id VARCHAR(64),
        created_at TIMESTAMP WITH TIME ZONE NOT NULL,
        reviewed_by VARCHAR(128),
        review_notes TEXT,
        reviewed_at TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_veritas_alert_reviews_status
        ON veritas_alert_reviews (status, created_at)
    """,
)


def ensure_schema(engine: Optional[Engine] = None) -> bool:
    """
    Create the Veritas tables if absent.

    Returns:
        True if the schema was applied, False if no database is configured
    """
    engine = engine or get_engine()
    if engine is None:
        return False
    with engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(text(statement))
    logger.info("[VERITAS-DB] Schema ensured")
    return True


# ============================================================================
# HEALTH CHECK
# ============================================================================

def check_database_connection() -> bool:
    """
    Verify database connectivity.

    Returns:
        bool: True if reachable, False if no database is configured

    Raises:
        Exception: If a configured database cannot be reached
    """
    engine = get_engine()
    if engine is None:
        return False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        raise Exception(f"Database connection failed: {e}")
