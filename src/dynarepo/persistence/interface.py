"""
Persistence Store Interface

💾 Backing Store Contract:
This module defines what the repository needs from a persistence engine:
an immutable query handle that query specs fold themselves onto, and a
store that resolves rows by id, stages writes and commits them. Any engine
that implements these two classes can sit behind a Repository.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, List, Optional, Sequence, Type, TypeVar, TYPE_CHECKING

if TYPE_CHECKING:
    from ..queries.filter import Predicate
    from ..queries.paths import ResolvedPath
    from ..queries.sort import SortKey

EntityType = TypeVar("EntityType")


class QueryHandle(ABC, Generic[EntityType]):
    """
    Immutable description of a query over one entity type.

    Every builder method returns a new handle, so one handle can serve as
    the base of several queries (a page and its total count, for example).
    A handle returned by :meth:`project` materializes flat value tuples
    instead of entities.
    """

    entity_class: Type[EntityType]

    @abstractmethod
    def where(self, predicate: "Predicate") -> "QueryHandle[EntityType]":
        """AND a predicate onto the query"""

    @abstractmethod
    def order_by(self, key: "SortKey") -> "QueryHandle[EntityType]":
        """Add an ordering key after the ones already applied"""

    @abstractmethod
    def include(self, path: "ResolvedPath") -> "QueryHandle[EntityType]":
        """Eager-load a chain of relationships on full materialization"""

    @abstractmethod
    def project(self, paths: Sequence["ResolvedPath"]) -> "QueryHandle[EntityType]":
        """Narrow results to one flat tuple per row, one value per path"""

    @abstractmethod
    def offset(self, count: int) -> "QueryHandle[EntityType]":
        """Skip ``count`` rows"""

    @abstractmethod
    def limit(self, count: int) -> "QueryHandle[EntityType]":
        """Return at most ``count`` rows"""

    @abstractmethod
    async def all(self) -> List[Any]:
        """
        Execute the query.

        Returns:
            Entities, or value tuples when the handle is projected
        """

    @abstractmethod
    async def first(self) -> Optional[Any]:
        """Execute the query and return the first row or None"""

    @abstractmethod
    async def count(self) -> int:
        """Count the rows the query would return, without materializing them"""

    @abstractmethod
    async def exists(self) -> bool:
        """True when at least one row matches"""


class BackingStore(ABC):
    """
    Abstract persistence engine behind a repository.

    A store instance owns one set of pending writes: ``add``, ``update`` and
    ``remove`` stage changes that become durable only on ``commit``. A store
    instance must not be shared between concurrent callers.
    """

    @abstractmethod
    def query(self, entity_class: Type[EntityType]) -> QueryHandle[EntityType]:
        """
        Start a query over every row of ``entity_class``.

        Args:
            entity_class: The entity class type

        Returns:
            A fresh query handle
        """

    @abstractmethod
    async def get(self, entity_class: Type[EntityType], entity_id: Any) -> Optional[EntityType]:
        """
        Load a row by id, regardless of soft-delete state.

        Args:
            entity_class: The entity class type
            entity_id: The identifier, already coerced to the id field type

        Returns:
            The entity or None if not found
        """

    @abstractmethod
    async def add(self, entity: EntityType) -> EntityType:
        """Stage an insert"""

    @abstractmethod
    async def update(self, entity: EntityType) -> EntityType:
        """
        Stage an update.

        Returns:
            The instance the store tracks for this row, which may differ
            from the one passed in
        """

    @abstractmethod
    async def remove(self, entity: EntityType):
        """Stage a physical removal"""

    @abstractmethod
    async def commit(self):
        """Make every staged write durable as one unit"""

    @abstractmethod
    async def rollback(self):
        """Discard every staged write"""


# Export main components
__all__ = ["QueryHandle", "BackingStore"]
