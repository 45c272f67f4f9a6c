"""
Unit of Work - Commit Scope Over One Backing Store

💾 Single Durability Point:
Repository calls only stage writes. A UnitOfWork commits everything staged
on its store when the ``async with`` block exits normally and rolls back
when it exits with an exception (task cancellation included).

Usage:
    async with UnitOfWork(store) as uow:
        await companies.add(Company(name="Acme"))
        await employees.soft_delete_by_id(7)
        # Commit happens automatically on successful exit
"""

import logging
from typing import Optional

from .interface import BackingStore

logger = logging.getLogger(__name__)


class UnitOfWorkError(Exception):
    """Raised when a unit of work is used out of order"""
    pass


class UnitOfWork:
    """Commit-or-rollback scope around one backing store"""

    def __init__(self, store: BackingStore):
        self.store = store
        self._is_active = False
        self._is_committed = False
        self._is_rolled_back = False

    @property
    def is_active(self) -> bool:
        return self._is_active

    @property
    def is_committed(self) -> bool:
        return self._is_committed

    @property
    def is_rolled_back(self) -> bool:
        return self._is_rolled_back

    async def begin(self):
        if self._is_active:
            raise UnitOfWorkError("Unit of work is already active")
        if self._is_committed or self._is_rolled_back:
            raise UnitOfWorkError("Unit of work has already been completed")
        self._is_active = True

    async def commit(self):
        """Commit staged writes; the store is rolled back if the commit fails"""
        if not self._is_active:
            raise UnitOfWorkError("No active unit of work to commit")
        try:
            await self.store.commit()
        except Exception:
            await self.rollback()
            raise
        self._is_active = False
        self._is_committed = True
        logger.debug("Unit of work committed")

    async def rollback(self):
        if not self._is_active:
            return
        self._is_active = False
        self._is_rolled_back = True
        await self.store.rollback()
        logger.debug("Unit of work rolled back")

    async def __aenter__(self) -> "UnitOfWork":
        await self.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> Optional[bool]:
        if exc_type is None:
            if self._is_active:
                await self.commit()
        else:
            await self.rollback()
        return False


# Export main components
__all__ = ["UnitOfWork", "UnitOfWorkError"]
