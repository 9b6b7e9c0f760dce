"""
Database Package

Provides SQLAlchemy async session management, model definitions and the
database-backed login state store.
"""

from .session import create_session_factory, create_tables
from .models import Base, LoginStateRecord
from .state_store import SqlStateStore

__all__ = [
    "create_session_factory",
    "create_tables",
    "Base",
    "LoginStateRecord",
    "SqlStateStore",
]
