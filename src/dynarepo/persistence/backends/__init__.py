"""
Backing stores: an in-memory store for development and tests, and an
SQLAlchemy AsyncSession store for relational databases.
"""

from .memory import MemoryDatabase, MemoryStore, MemoryQuery
from .sql import SQLStore, SQLQuery, create_engine, create_session_factory, create_tables

__all__ = [
    "MemoryDatabase", "MemoryStore", "MemoryQuery",
    "SQLStore", "SQLQuery", "create_engine", "create_session_factory", "create_tables",
]
