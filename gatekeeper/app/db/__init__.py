"""Database package for gatekeeper.

This package provides:
- Async engine and session maker management
- The SQLAlchemy data store used by the admission controller
"""

from gatekeeper.app.db.async_session import (
    close_async_engine,
    get_async_engine,
    get_async_session_maker,
)
from gatekeeper.app.db.store import SqlAlchemyDataStore

__all__ = [
    "close_async_engine",
    "get_async_engine",
    "get_async_session_maker",
    "SqlAlchemyDataStore",
]
