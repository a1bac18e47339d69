"""Engine services and database session management."""

from expense_engine.services.db import create_db_engine, get_session_factory

__all__ = [
    "create_db_engine",
    "get_session_factory",
]
