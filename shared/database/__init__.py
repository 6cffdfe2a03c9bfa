"""
Database Connection and Utilities

Manages the PostgreSQL connection used by the SQL enrollment store.
"""

from shared.database.postgres import (
    Base,
    close_db,
    create_session_factory,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "create_session_factory",
    "init_db",
    "close_db",
    "Base",
]
