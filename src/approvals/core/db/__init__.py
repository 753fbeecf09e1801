"""Database utilities - engine and session."""

from src.approvals.core.db.engine import dispose_engine, enable_sqlite_savepoints, get_engine
from src.approvals.core.db.session import get_session

__all__ = [
    # Engine
    "dispose_engine",
    "enable_sqlite_savepoints",
    "get_engine",
    # Session
    "get_session",
]
