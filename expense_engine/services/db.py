"""Database connection and session management."""

import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from expense_engine.config import get_settings

logger = logging.getLogger(__name__)

_session_factory: Optional[sessionmaker] = None


def is_memory_sqlite(database_url: str) -> bool:
    """True for SQLite URLs without a database file."""
    url = make_url(database_url)
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create engine for the given URL.

    In-memory SQLite uses StaticPool so every session of the process sees
    the same database. File SQLite keeps the default pool, one connection
    (and transaction) per session. Server databases get pool_pre_ping.
    """
    if is_memory_sqlite(database_url):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if make_url(database_url).get_backend_name() == "sqlite":
        return create_engine(database_url, echo=echo)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def get_session_factory() -> sessionmaker:
    """Get or create the session factory for the configured database."""
    global _session_factory
    if _session_factory is None:
        settings = get_settings()
        engine = create_db_engine(settings.database_url, echo=settings.database_echo)
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        logger.info("Database engine created for %s", engine.url.render_as_string(hide_password=True))
    return _session_factory


__all__ = ["create_db_engine", "get_session_factory", "is_memory_sqlite"]
