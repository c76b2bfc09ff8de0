"""
Database utilities and connection management.

WHAT: SQLite database setup with WAL mode
WHY: Durable session state that survives process restarts
HOW: SQLAlchemy sync engine v2 with WAL mode, session management
"""

from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from contextlib import contextmanager
from pathlib import Path

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Base for models
Base = declarative_base()

_default_engine: Engine | None = None


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine; SQLite URLs get WAL mode and FK enforcement.

    Args:
        url: SQLAlchemy database URL
        echo: Log SQL statements

    Returns:
        Engine instance
    """
    is_sqlite = url.startswith("sqlite")
    connect_args = {}

    if is_sqlite:
        connect_args["check_same_thread"] = False
        db_path = url.replace("sqlite:///", "")
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, connect_args=connect_args, echo=echo, future=True)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable WAL mode for better concurrency."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def get_engine() -> Engine:
    """Process-wide engine built from settings.DATABASE_URL on first use."""
    global _default_engine
    if _default_engine is None:
        _default_engine = create_db_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    return _default_engine


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to `engine`."""
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False
    )


@contextmanager
def session_scope(factory: sessionmaker):
    """
    Context manager for a database session.

    Usage:
        with session_scope(factory) as db:
            # use db session
            pass

    Yields:
        Session: SQLAlchemy session, committed on success, rolled back on error
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping_database(engine: Engine | None = None) -> dict:
    """
    Check database connectivity.

    Returns:
        Dict with status and info
    """
    engine = engine or get_engine()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"available": True, "url": str(engine.url), "error": None}
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return {"available": False, "url": str(engine.url), "error": str(e)}


def init_db(engine: Engine | None = None):
    """Create all tables (idempotent)."""
    from . import models  # noqa: F401  registers tables on Base.metadata

    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database initialized ({engine.url})")


def close_db(engine: Engine | None = None):
    """Close database connections."""
    global _default_engine
    if engine is None:
        if _default_engine is None:
            return
        engine = _default_engine
        _default_engine = None
    engine.dispose()
    logger.info("Database connections closed")
