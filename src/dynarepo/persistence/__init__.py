"""
Persistence - the repository core, the backing store contract and the
bundled stores.
"""

from .interface import BackingStore, QueryHandle
from .repository import Repository, Operation, Stages
from .unit_of_work import UnitOfWork, UnitOfWorkError
from .backends import MemoryDatabase, MemoryStore, SQLStore

__all__ = [
    "BackingStore", "QueryHandle",
    "Repository", "Operation", "Stages",
    "UnitOfWork", "UnitOfWorkError",
    "MemoryDatabase", "MemoryStore", "SQLStore",
]
